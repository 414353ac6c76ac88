"""
screenshot-daemon 설정 관리 모듈입니다.

역할:
- YAML 설정 파일(선택)을 로드하고 Pydantic 스키마로 유효성 검증
- 환경변수 오버라이드 지원 (접두사: SSD_)
- dot-notation 기반 설정값 조회 (예: "capture.interval_ms")

설정은 시작 시 한 번만 읽습니다. 캡처 주기는 프로세스 수명 동안
변하지 않아야 하므로 파일 변경 감지(핫스왑)는 제공하지 않습니다.

사용 예시:
    >>> manager = ConfigManager()
    >>> config = manager.load("config.yaml")
    >>> interval_ms = manager.get("capture.interval_ms")
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import ValidationError

from screenshot_daemon.config.schema import AppConfig

# 모듈 로거 설정
logger = logging.getLogger(__name__)

# 환경변수 오버라이드 접두사
ENV_PREFIX = "SSD_"


class ConfigLoadError(Exception):
    """설정 파일 로드 중 발생하는 에러의 기본 클래스입니다."""
    pass


class ConfigValidationError(ConfigLoadError):
    """설정 스키마 검증 실패 시 발생하는 에러입니다."""
    pass


class ConfigFileNotFoundError(ConfigLoadError):
    """설정 파일을 찾을 수 없을 때 발생하는 에러입니다."""
    pass


class ConfigManager:
    """
    YAML 설정 파일과 환경변수를 합쳐 AppConfig를 만드는 매니저 클래스입니다.

    역할:
    - YAML 파일 파싱 및 Pydantic 유효성 검증
    - 환경변수 오버라이드 (SSD_ 접두사)
    - dot-notation 설정값 조회

    설정 파일 없이 load()를 호출하면 기본값 + 환경변수만으로 설정을 구성합니다.
    """

    def __init__(self, environ: Optional[dict[str, str]] = None) -> None:
        """
        ConfigManager를 초기화합니다.

        파라미터:
            environ: 오버라이드에 사용할 환경변수 매핑. None이면 os.environ 사용
        """
        # 현재 활성 설정 객체 (로드 전에는 None)
        self._config: Optional[AppConfig] = None
        self._environ = environ

        logger.debug("ConfigManager 인스턴스 생성 완료")

    def load(self, filepath: str | Path | None = None) -> AppConfig:
        """
        설정을 로드하고 Pydantic 스키마로 검증합니다.

        처리 순서:
        1. 파일 경로가 주어지면 존재 여부 확인 후 YAML 파싱
        2. 환경변수 오버라이드 적용
        3. Pydantic 스키마 검증
        4. 검증 통과 시 활성 설정으로 교체

        파라미터:
            filepath (str | Path | None): YAML 설정 파일 경로. None이면 기본값 사용

        반환값:
            AppConfig: 검증 완료된 설정 객체

        에러:
            ConfigFileNotFoundError: 파일이 존재하지 않을 때
            ConfigValidationError: 스키마 검증 실패 시
            ConfigLoadError: YAML 파싱 실패 등 기타 에러
        """
        config_filepath = Path(filepath) if filepath is not None else None

        try:
            if config_filepath is None:
                logger.debug("설정 파일 없이 기본값으로 설정 구성")
                raw_config: dict = {}
            else:
                logger.info(f"설정 파일 로드 시작: {config_filepath}")
                if not config_filepath.exists():
                    error_message = f"설정 파일을 찾을 수 없습니다: {config_filepath}"
                    logger.error(error_message)
                    raise ConfigFileNotFoundError(error_message)
                raw_config = self._parse_yaml_file(config_filepath)
                logger.debug(f"YAML 파싱 완료: {len(raw_config)} 개 최상위 키")

            raw_config = self._apply_env_overrides(raw_config)
            validated_config = self._validate_config(raw_config)

            self._config = validated_config

            logger.info(
                f"설정 로드 성공: "
                f"interval_ms={validated_config.capture.interval_ms}, "
                f"log_level={validated_config.system.log_level}, "
                f"log_format={validated_config.system.log_format}"
            )
            return validated_config

        except ConfigLoadError:
            # ConfigLoadError 하위 클래스는 그대로 전파
            raise

        except Exception as unexpected_error:
            error_message = f"설정 로드 중 예상치 못한 에러: {unexpected_error}"
            logger.error(error_message, exc_info=True)
            raise ConfigLoadError(error_message) from unexpected_error

    def get(self, key: str, default: Any = None) -> Any:
        """
        dot-notation으로 설정값을 조회합니다.

        예: "capture.interval_ms" -> config.capture.interval_ms

        파라미터:
            key (str): dot-notation 설정 키
            default (Any): 키가 존재하지 않을 때 반환할 기본값

        반환값:
            Any: 설정값 또는 기본값

        에러:
            RuntimeError: 설정이 로드되지 않은 상태에서 호출 시
        """
        if self._config is None:
            error_message = "설정이 아직 로드되지 않았습니다. load()를 먼저 호출하세요."
            logger.error(error_message)
            raise RuntimeError(error_message)

        current_value: Any = self._config
        for part in key.split("."):
            if hasattr(current_value, part):
                current_value = getattr(current_value, part)
            elif isinstance(current_value, dict) and part in current_value:
                current_value = current_value[part]
            else:
                logger.debug(f"설정 키 '{key}'에서 '{part}' 부분을 찾을 수 없음, 기본값 반환")
                return default

        return current_value

    # =========================================================================
    # 내부 메서드 (private)
    # =========================================================================

    def _parse_yaml_file(self, filepath: Path) -> dict:
        """
        YAML 파일을 읽어서 딕셔너리로 파싱합니다.

        에러:
            ConfigLoadError: 파일 읽기 또는 파싱 실패 시
        """
        try:
            with open(filepath, "r", encoding="utf-8") as config_file:
                raw_data = yaml.safe_load(config_file)

            # 빈 파일은 기본값으로 처리
            if raw_data is None:
                logger.warning(f"설정 파일이 비어있습니다: {filepath}")
                return {}

            if not isinstance(raw_data, dict):
                error_message = f"설정 파일의 최상위 구조가 딕셔너리가 아닙니다: {type(raw_data)}"
                raise ConfigLoadError(error_message)

            return raw_data

        except yaml.YAMLError as yaml_error:
            error_message = f"YAML 파싱 에러: {yaml_error}"
            logger.error(error_message, exc_info=True)
            raise ConfigLoadError(error_message) from yaml_error

        except OSError as file_error:
            error_message = f"파일 읽기 에러: {file_error}"
            logger.error(error_message, exc_info=True)
            raise ConfigLoadError(error_message) from file_error

    def _apply_env_overrides(self, raw_config: dict) -> dict:
        """
        SSD_ 접두사 환경변수로 설정값을 오버라이드합니다.

        환경변수 매핑 규칙:
        - 첫 번째 언더스코어 앞부분이 섹션, 나머지가 필드 이름
        - 예: SSD_CAPTURE_INTERVAL_MS -> capture.interval_ms
        - 예: SSD_SYSTEM_LOG_LEVEL -> system.log_level
        - 값은 문자열 그대로 넘기고 타입 변환은 Pydantic에 맡김
        """
        environ = self._environ if self._environ is not None else os.environ
        override_count = 0

        for env_key, env_value in environ.items():
            if not env_key.startswith(ENV_PREFIX):
                continue

            config_path = env_key[len(ENV_PREFIX):].lower()
            path_parts = config_path.split("_", 1)

            if len(path_parts) < 2:
                logger.debug(f"환경변수 '{env_key}' 무시 (키 경로 부족)")
                continue

            section_name, field_name = path_parts
            if section_name not in AppConfig.model_fields:
                logger.debug(f"환경변수 '{env_key}' 무시 (알 수 없는 섹션: {section_name})")
                continue

            section = raw_config.setdefault(section_name, {})
            if not isinstance(section, dict):
                logger.warning(f"환경변수 '{env_key}' 무시 ('{section_name}' 섹션이 딕셔너리가 아님)")
                continue

            section[field_name] = env_value
            override_count += 1
            logger.info(f"환경변수 오버라이드: {env_key} -> {section_name}.{field_name} = {env_value}")

        if override_count > 0:
            logger.info(f"환경변수 오버라이드 적용 완료: {override_count}건")

        return raw_config

    def _validate_config(self, raw_config: dict) -> AppConfig:
        """
        딕셔너리를 Pydantic AppConfig 모델로 검증하고 변환합니다.

        에러:
            ConfigValidationError: Pydantic 검증 실패 시
        """
        try:
            return AppConfig(**raw_config)

        except ValidationError as validation_error:
            error_details = validation_error.errors()
            for error_detail in error_details:
                field_path = " -> ".join(str(loc) for loc in error_detail["loc"])
                logger.error(
                    f"설정 검증 실패 - 필드: {field_path}, "
                    f"에러: {error_detail['msg']}, "
                    f"입력값: {error_detail.get('input', 'N/A')}"
                )

            error_message = f"설정 스키마 검증 실패: {len(error_details)}개 에러 발생"
            raise ConfigValidationError(error_message) from validation_error
