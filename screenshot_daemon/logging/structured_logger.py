"""
데몬 로깅 초기화 모듈입니다.

출력 경로:
- 저장 완료 한 줄 (SAVE_LOGGER_NAME 로거): stdout, log_level과 무관하게 항상 출력
- 그 밖의 로그 (진행/경고/에러): stderr
- log_dir 설정 시 모든 로그를 RotatingFileHandler로 파일에도 기록 (10MB, 5개 보존)

포맷은 system.log_format을 따릅니다 (json: python-json-logger, text: 세션 접두어).
"""

from __future__ import annotations

import logging
import logging.handlers
import sys
import uuid
from pathlib import Path
from typing import Optional

from pythonjsonlogger import jsonlogger

from screenshot_daemon.config.schema import AppConfig

SAVE_LOGGER_NAME = "screenshot_daemon.saves"

LOG_FILENAME = "screenshot_daemon.log"
_MAX_LOG_BYTES = 10 * 1024 * 1024
_LOG_BACKUP_COUNT = 5


def setup_logging(config: AppConfig, session_id: Optional[str] = None) -> str:
    """
    root 로거와 저장 완료 로거에 핸들러를 설치합니다. 다시 호출하면 기존 핸들러를 교체합니다.

    파라미터:
        config: AppConfig 인스턴스
        session_id: 세션 식별자. None이면 config.system.session_id, 그것도 비어있으면 UUID

    반환값:
        str: 이번 실행의 세션 ID
    """
    session_id = session_id or config.system.session_id or str(uuid.uuid4())
    log_level = getattr(logging, config.system.log_level, logging.INFO)
    formatter = _build_formatter(config.system.log_format, session_id)

    root_logger = logging.getLogger()
    save_logger = logging.getLogger(SAVE_LOGGER_NAME)
    for target in (root_logger, save_logger):
        for handler in target.handlers[:]:
            target.removeHandler(handler)
            handler.close()

    root_logger.setLevel(log_level)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    # 저장 완료 줄은 stdout 핸들러가 따로 출력
    console_handler.addFilter(lambda record: record.name != SAVE_LOGGER_NAME)
    root_logger.addHandler(console_handler)

    save_handler = logging.StreamHandler(sys.stdout)
    save_handler.setFormatter(logging.Formatter("%(message)s"))
    save_logger.addHandler(save_handler)
    save_logger.setLevel(logging.INFO)

    if config.system.log_dir:
        log_dir = Path(config.system.log_dir).expanduser()
        try:
            log_dir.mkdir(parents=True, exist_ok=True)
            file_handler = logging.handlers.RotatingFileHandler(
                filename=log_dir / LOG_FILENAME,
                maxBytes=_MAX_LOG_BYTES,
                backupCount=_LOG_BACKUP_COUNT,
                encoding="utf-8",
            )
        except OSError as exc:
            logging.getLogger(__name__).warning(f"로그 파일 핸들러 생성 실패: {exc}")
        else:
            file_handler.setFormatter(formatter)
            root_logger.addHandler(file_handler)

    logging.getLogger(__name__).debug(
        f"로깅 초기화: level={config.system.log_level}, "
        f"format={config.system.log_format}, session={session_id}"
    )
    return session_id


def _build_formatter(log_format: str, session_id: str) -> logging.Formatter:
    """log_format에 맞는 포맷터를 만듭니다. JSON 레코드에는 session_id/level/module 필드가 붙습니다."""
    if log_format == "json":
        return jsonlogger.JsonFormatter(
            fmt="%(asctime)s %(levelname)s %(name)s %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S",
            rename_fields={"levelname": "level", "name": "module"},
            static_fields={"session_id": session_id},
        )
    return logging.Formatter(
        fmt=f"%(asctime)s [{session_id[:8]}] %(levelname)-8s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
