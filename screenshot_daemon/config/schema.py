"""
screenshot-daemon 설정 스키마 정의 모듈입니다.

역할:
- Pydantic v2 BaseModel 기반으로 config.yaml의 전체 구조를 타입 안전하게 정의
- 각 섹션(system, capture, storage, encoder)을 독립적인 중첩 모델로 분리
- 필드별 기본값, 허용 범위, 유효성 검증(validator)을 포함

사용 예시:
    >>> from screenshot_daemon.config.schema import AppConfig
    >>> config = AppConfig(**yaml_data)
    >>> print(config.capture.interval_ms)
"""

from __future__ import annotations

import logging
import re
from typing import Any

from pydantic import BaseModel, Field, field_validator

# 모듈 로거 설정
logger = logging.getLogger(__name__)

# 캡처 주기 기본값 (밀리초)
DEFAULT_INTERVAL_MS = 1000

# 앞쪽 공백 + 부호 + 숫자 (뒤따르는 문자는 무시)
_INTEGER_PREFIX = re.compile(r"\s*([+-]?\d+)")


def coerce_interval_ms(value: Any, default: int = DEFAULT_INTERVAL_MS) -> int:
    """
    캡처 주기 값을 양의 정수(ms)로 정규화합니다.

    C atoi와 같이 앞쪽 공백 뒤의 정수 접두어만 읽습니다 ("250ms" -> 250, "12.5" -> 12).
    정수 접두어가 없거나 0 이하인 값은 에러 없이 default로 대체됩니다.

    파라미터:
        value: 사용자 입력값 (str | int | None 등)
        default: 대체할 기본값

    반환값:
        int: 양의 정수 캡처 주기 (ms)
    """
    if value is None or isinstance(value, bool):
        return default
    match = _INTEGER_PREFIX.match(str(value))
    if match is None:
        return default
    interval_ms = int(match.group(1))
    if interval_ms <= 0:
        return default
    return interval_ms


# =============================================================================
# system 섹션: 시스템 전역 설정
# =============================================================================

class SystemConfig(BaseModel):
    """
    시스템 전역 설정을 정의하는 모델입니다.

    역할:
    - 로깅 레벨 및 포맷 지정
    - 세션 식별자 관리
    """
    # 로그 출력 레벨
    log_level: str = Field(default="INFO", description="로그 레벨 (DEBUG | INFO | WARNING | ERROR)")
    # 로그 출력 포맷
    log_format: str = Field(default="text", description="로그 포맷 (json | text)")
    # 로그 파일 저장 디렉토리 경로 (빈 문자열이면 콘솔 출력만 사용)
    log_dir: str = Field(default="", description="로그 저장 디렉토리 (비어있으면 파일 로그 비활성화)")
    # 세션 고유 식별자 (빈 문자열이면 UUID로 자동 생성)
    session_id: str = Field(default="", description="세션 ID (비어있으면 UUID 자동생성)")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        """로그 레벨이 유효한 Python 로깅 레벨인지 검증합니다."""
        allowed_levels = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
        # 대소문자 구분 없이 비교 후 대문자로 정규화
        upper_value = value.upper()
        if upper_value not in allowed_levels:
            error_message = f"log_level은 {allowed_levels} 중 하나여야 합니다. 입력값: '{value}'"
            raise ValueError(error_message)
        return upper_value

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, value: str) -> str:
        """로그 포맷이 지원되는 형식인지 검증합니다."""
        allowed_formats = ("json", "text")
        if value not in allowed_formats:
            error_message = f"log_format은 {allowed_formats} 중 하나여야 합니다. 입력값: '{value}'"
            raise ValueError(error_message)
        return value


# =============================================================================
# capture 섹션: 화면 캡처 관련 설정
# =============================================================================

class CaptureConfig(BaseModel):
    """
    화면 캡처 주기 및 대상 디스플레이 설정입니다.

    역할:
    - 캡처 시작 간격(ms) 지정. 프로세스 수명 동안 변경되지 않음
    - 접속할 X 디스플레이 이름 지정
    """
    # 캡처 시작 간격 (밀리초, 0 이하는 기본값 1000으로 대체)
    interval_ms: int = Field(default=DEFAULT_INTERVAL_MS, description="캡처 주기 (ms)")
    # X 디스플레이 이름 (빈 문자열이면 $DISPLAY 사용)
    display: str = Field(default="", description="X 디스플레이 이름 (비어있으면 $DISPLAY)")

    @field_validator("interval_ms", mode="before")
    @classmethod
    def validate_interval_ms(cls, value: Any) -> int:
        """
        캡처 주기를 양의 정수로 정규화합니다.

        CLI 인자와 동일하게, 잘못된 값은 에러 대신 기본값으로 대체합니다.
        """
        # default=0으로 한 번 더 해석하면 잘못된 입력 여부를 구분할 수 있음
        if coerce_interval_ms(value, default=0) == 0:
            logger.warning(f"유효하지 않은 interval_ms 값, 기본값 사용: {value!r} -> {DEFAULT_INTERVAL_MS}")
        return coerce_interval_ms(value)


# =============================================================================
# storage 섹션: 저장 경로 설정
# =============================================================================

class StorageConfig(BaseModel):
    """
    스크린샷 저장 위치 설정입니다.

    역할:
    - 기본 저장 디렉토리 지정 (비어있으면 $HOME, 없으면 현재 디렉토리)
    - 날짜별 트리의 최상위 디렉토리 이름 지정
    """
    # 기본 저장 디렉토리
    base_dir: str = Field(default="", description="기본 저장 디렉토리 (비어있으면 $HOME)")
    # 날짜 트리 최상위 디렉토리 이름
    root_dirname: str = Field(default="Screenshots", description="최상위 디렉토리 이름")

    @field_validator("root_dirname")
    @classmethod
    def validate_root_dirname(cls, value: str) -> str:
        """최상위 디렉토리 이름이 단일 경로 세그먼트인지 검증합니다."""
        if not value or "/" in value or value in (".", ".."):
            error_message = f"root_dirname은 단일 디렉토리 이름이어야 합니다. 입력값: '{value}'"
            raise ValueError(error_message)
        return value


# =============================================================================
# encoder 섹션: PNG 인코더 설정
# =============================================================================

class EncoderConfig(BaseModel):
    """
    PNG 인코더 설정입니다.

    역할:
    - PNG 압축 레벨 지정 (0=무압축, 9=최대 압축)
    """
    # PNG 압축 레벨 (cv2.IMWRITE_PNG_COMPRESSION)
    compression_level: int = Field(default=6, description="PNG 압축 레벨 (0~9)")

    @field_validator("compression_level")
    @classmethod
    def validate_compression_level(cls, value: int) -> int:
        """압축 레벨이 0~9 범위인지 검증합니다."""
        if not 0 <= value <= 9:
            error_message = f"compression_level은 0~9 범위여야 합니다. 입력값: {value}"
            raise ValueError(error_message)
        return value


# =============================================================================
# 최상위 설정 모델
# =============================================================================

class AppConfig(BaseModel):
    """
    screenshot-daemon 전체 설정 모델입니다.

    config.yaml의 최상위 구조와 1:1로 대응합니다.
    누락된 섹션은 기본값으로 채워집니다.
    """
    system: SystemConfig = Field(default_factory=SystemConfig, description="시스템 설정")
    capture: CaptureConfig = Field(default_factory=CaptureConfig, description="캡처 설정")
    storage: StorageConfig = Field(default_factory=StorageConfig, description="저장 설정")
    encoder: EncoderConfig = Field(default_factory=EncoderConfig, description="인코더 설정")
