"""
로깅 패키지
"""

from screenshot_daemon.logging.structured_logger import SAVE_LOGGER_NAME, setup_logging

__all__ = ["SAVE_LOGGER_NAME", "setup_logging"]
