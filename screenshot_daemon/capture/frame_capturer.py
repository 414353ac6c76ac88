"""
전체 화면 캡처 모듈입니다.

역할:
- CaptureSession: 시작 시 한 번 만들어 프로세스 수명 동안 유지하는 캡처 컨텍스트
  (디스플레이 연결, 대상 창, 고정 해상도, 픽셀 포맷, 난수 소스)
- FrameCapturer: 세션의 대상 창 전체를 RasterFrame으로 읽어옴

사용 예시:
    >>> with CaptureSession.open() as session:
    ...     frame = FrameCapturer(session).capture()
"""

from __future__ import annotations

import logging
import random
import time
from typing import Callable, Optional

from screenshot_daemon.capture import PixelFormat, RasterFrame
from screenshot_daemon.capture.xlib_bindings import (
    CaptureError,
    DisplayConnectionError,
    XlibDisplay,
)

logger = logging.getLogger(__name__)


class CaptureSession:
    """
    캡처 반복 전체에서 공유하는 명시적 컨텍스트입니다.

    디스플레이 연결과 난수 소스를 전역 상태 대신 이 객체가 들고 있으며,
    모든 연산에 인자로 전달됩니다. 해상도와 픽셀 포맷은 시작 시 한 번만 조회합니다.

    필드:
        display: 디스플레이 연결 (프로세스 수명 동안 유지)
        window: 캡처 대상 창 (루트 창)
        width, height: 캡처 영역 크기
        pixel_format: 디스플레이의 packed 픽셀 포맷
        rng: 파일 이름 생성에 쓰는 난수 소스 (테스트에서 교체 가능)
    """

    def __init__(
        self,
        display: XlibDisplay,
        window: int,
        width: int,
        height: int,
        pixel_format: PixelFormat,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.display = display
        self.window = window
        self.width = width
        self.height = height
        self.pixel_format = pixel_format
        self.rng = rng if rng is not None else random.Random()

    @classmethod
    def open(
        cls,
        display_name: Optional[str] = None,
        rng: Optional[random.Random] = None,
        display_factory: Callable[[Optional[str]], XlibDisplay] = XlibDisplay.open,
    ) -> "CaptureSession":
        """
        디스플레이에 연결하고 루트 창의 크기/픽셀 포맷을 조회하여 세션을 만듭니다.

        파라미터:
            display_name: X 디스플레이 이름 (None이면 $DISPLAY)
            rng: 난수 소스 (None이면 새 random.Random)
            display_factory: 디스플레이 연결 함수 (테스트용 주입 지점)

        에러:
            DisplayConnectionError: 연결 실패 또는 루트 창 조회 실패 시
        """
        display = display_factory(display_name)
        try:
            window = display.root_window()
            width, height = display.geometry(window)
            pixel_format = display.query_pixel_format(window)
        except CaptureError as exc:
            display.close()
            raise DisplayConnectionError(f"루트 창 정보를 조회할 수 없습니다: {exc}") from exc

        if width <= 0 or height <= 0:
            display.close()
            raise DisplayConnectionError(f"루트 창 크기가 올바르지 않습니다: {width}x{height}")

        logger.info(
            f"캡처 세션 시작: window=0x{window:X}, size={width}x{height}, "
            f"bpp={pixel_format.bits_per_pixel}, byte_order={pixel_format.byte_order}, "
            f"masks=(0x{pixel_format.red.mask:X}, 0x{pixel_format.green.mask:X}, "
            f"0x{pixel_format.blue.mask:X})"
        )
        return cls(display, window, width, height, pixel_format, rng)

    def close(self) -> None:
        """디스플레이 연결을 해제합니다."""
        self.display.close()

    def __enter__(self) -> "CaptureSession":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class FrameCapturer:
    """세션의 대상 창 전체를 RasterFrame으로 캡처하는 클래스입니다."""

    def __init__(self, session: CaptureSession) -> None:
        self._session = session

    def capture(self) -> RasterFrame:
        """
        전체 화면을 한 장 캡처합니다.

        반환값:
            RasterFrame: 시작 시 조회한 크기/픽셀 포맷과 일치하는 프레임

        에러:
            CaptureError: 화면을 읽을 수 없거나 결과가 세션 정보와 맞지 않을 때
        """
        session = self._session
        started_ns = time.monotonic_ns()

        frame = session.display.get_image(
            session.window, 0, 0, session.width, session.height,
        )

        if (frame.width, frame.height) != (session.width, session.height):
            raise CaptureError(
                f"캡처 크기가 시작 시 크기와 다릅니다: "
                f"{frame.width}x{frame.height} != {session.width}x{session.height}"
            )
        if frame.pixel_format != session.pixel_format:
            raise CaptureError(
                f"캡처 픽셀 포맷이 시작 시 포맷과 다릅니다: {frame.pixel_format}"
            )
        if len(frame.data) < frame.bytes_per_line * frame.height:
            raise CaptureError(
                f"픽셀 버퍼가 짧습니다: {len(frame.data)} < "
                f"{frame.bytes_per_line * frame.height}"
            )

        elapsed_ms = (time.monotonic_ns() - started_ns) / 1_000_000
        logger.debug(f"프레임 캡처 완료: {frame.width}x{frame.height}, {elapsed_ms:.1f}ms")
        return frame
