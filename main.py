"""
screenshot-daemon 진입점

역할:
- 설정 로드 (기본값 < YAML < SSD_ 환경변수 < CLI 인자)
- 로깅 초기화
- X 디스플레이 연결 및 캡처 세션 생성 (실패 시 종료 코드 1)
- 캡처 루프를 외부에서 프로세스를 종료할 때까지 실행

파이프라인 (반복마다):
    PathAllocator → FrameCapturer → PixelNormalizer → PngEncoder → 다음 틱까지 대기

실행 예시:
    기본 1초 주기:
        python main.py

    250ms 주기:
        python main.py 250

    설정 파일 사용:
        python main.py --config config.yaml
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import Optional, Sequence

from screenshot_daemon.capture.frame_capturer import CaptureSession, FrameCapturer
from screenshot_daemon.capture.xlib_bindings import DisplayConnectionError
from screenshot_daemon.config.config_manager import ConfigLoadError, ConfigManager
from screenshot_daemon.config.schema import AppConfig, coerce_interval_ms
from screenshot_daemon.imaging.pixel_normalizer import PixelNormalizer
from screenshot_daemon.imaging.png_encoder import PngEncoder
from screenshot_daemon.logging.structured_logger import setup_logging
from screenshot_daemon.scheduler.capture_loop import CaptureLoop
from screenshot_daemon.storage.path_allocator import PathAllocator, resolve_base_dir

logger = logging.getLogger(__name__)

EXIT_DISPLAY_ERROR = 1
EXIT_CONFIG_ERROR = 2
EXIT_INTERRUPTED = 130


def _parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """커맨드라인 인자를 파싱합니다."""
    parser = argparse.ArgumentParser(
        description="screenshot-daemon: 주기적으로 전체 화면을 PNG로 저장합니다"
    )
    # 잘못된 값도 에러 없이 기본값으로 대체해야 하므로 문자열로 받음
    parser.add_argument(
        "interval", nargs="?", default=None,
        help="캡처 주기 (ms, 기본: 1000). 앞쪽 정수만 읽음 (250ms → 250), 정수가 없거나 0 이하면 기본값 사용",
    )
    parser.add_argument(
        "--config", default=None, help="YAML 설정 파일 경로 (선택)"
    )
    parser.add_argument(
        "--display", default=None, help="X 디스플레이 이름 (기본: $DISPLAY)"
    )
    return parser.parse_args(argv)


def _apply_cli_overrides(config: AppConfig, args: argparse.Namespace) -> AppConfig:
    """CLI 인자를 설정에 반영한 새 AppConfig를 반환합니다."""
    config_dict = config.model_dump()
    if args.interval is not None:
        config_dict["capture"]["interval_ms"] = coerce_interval_ms(
            args.interval, default=config.capture.interval_ms
        )
    if args.display:
        config_dict["capture"]["display"] = args.display
    return AppConfig(**config_dict)


def build_loop(config: AppConfig, session: CaptureSession) -> CaptureLoop:
    """설정과 캡처 세션으로 캡처 루프를 조립합니다."""
    allocator = PathAllocator(
        resolve_base_dir(config.storage.base_dir),
        session.rng,
        root_dirname=config.storage.root_dirname,
    )
    encoder = PngEncoder(compression_level=config.encoder.compression_level)
    return CaptureLoop(
        session=session,
        allocator=allocator,
        capturer=FrameCapturer(session),
        normalizer=PixelNormalizer(session.pixel_format),
        encoder=encoder,
        interval_ms=config.capture.interval_ms,
    )


def main(argv: Optional[Sequence[str]] = None) -> int:
    """
    데몬을 실행합니다.

    반환값:
        int: 종료 코드 (정상 경로에서는 반환하지 않음)
    """
    args = _parse_args(argv)

    try:
        config = _apply_cli_overrides(ConfigManager().load(args.config), args)
    except ConfigLoadError as exc:
        print(f"설정 로드 실패: {exc}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    setup_logging(config)
    logger.info(
        f"screenshot-daemon 시작: interval={config.capture.interval_ms}ms, "
        f"base_dir={resolve_base_dir(config.storage.base_dir)}"
    )

    try:
        session = CaptureSession.open(config.capture.display or None)
    except DisplayConnectionError as exc:
        logger.error(f"디스플레이 연결 실패: {exc}")
        return EXIT_DISPLAY_ERROR

    with session:
        loop = build_loop(config, session)
        try:
            loop.run_forever()
        except KeyboardInterrupt:
            logger.info(
                f"사용자 중단으로 종료: saved={loop.stats.saved}, "
                f"iterations={loop.stats.iterations}"
            )
            return EXIT_INTERRUPTED

    return 0


if __name__ == "__main__":
    sys.exit(main())
