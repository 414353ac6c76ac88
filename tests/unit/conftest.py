"""
단위 테스트 공용 픽스처

- FakeDisplay: X 서버 없이 XlibDisplay 인터페이스를 흉내내는 가짜 디스플레이
- 24bit TrueColor(32bpp, LSBFirst, 0xFF0000/0xFF00/0xFF) 포맷 기본 제공
"""

from __future__ import annotations

import random
import struct
from typing import Optional

import pytest

from screenshot_daemon.capture import PixelFormat, RasterFrame
from screenshot_daemon.capture.frame_capturer import CaptureSession
from screenshot_daemon.capture.xlib_bindings import CaptureError

TRUECOLOR_24 = PixelFormat.from_masks(
    bits_per_pixel=32,
    byte_order="little",
    red_mask=0xFF0000,
    green_mask=0x00FF00,
    blue_mask=0x0000FF,
)

ROOT_WINDOW = 0x1A5


class FakeDisplay:
    """
    화면 전체를 한 가지 색(pixel_word)으로 채워 돌려주는 가짜 디스플레이입니다.

    fail_captures 횟수만큼 get_image()가 CaptureError를 발생시킵니다.
    """

    def __init__(
        self,
        width: int = 4,
        height: int = 3,
        pixel_format: PixelFormat = TRUECOLOR_24,
        pixel_word: int = 0x112233,
        fail_captures: int = 0,
    ) -> None:
        self.width = width
        self.height = height
        self.pixel_format = pixel_format
        self.pixel_word = pixel_word
        self.fail_captures = fail_captures
        self.get_image_calls = 0
        self.closed = False

    def root_window(self) -> int:
        return ROOT_WINDOW

    def geometry(self, window: int) -> tuple[int, int]:
        return self.width, self.height

    def query_pixel_format(self, window: int) -> PixelFormat:
        return self.pixel_format

    def get_image(self, window: int, x: int, y: int, width: int, height: int) -> RasterFrame:
        self.get_image_calls += 1
        if self.fail_captures > 0:
            self.fail_captures -= 1
            raise CaptureError("가짜 디스플레이 캡처 실패")
        # 32bpp 행 + 4바이트 패딩
        bytes_per_line = width * 4 + 4
        row = struct.pack("<I", self.pixel_word) * width + b"\x00" * 4
        return RasterFrame(
            width=width,
            height=height,
            bytes_per_line=bytes_per_line,
            pixel_format=self.pixel_format,
            data=row * height,
        )

    def close(self) -> None:
        self.closed = True


def make_session(display: Optional[FakeDisplay] = None, seed: int = 1234) -> CaptureSession:
    """FakeDisplay로 CaptureSession을 만듭니다."""
    display = display or FakeDisplay()
    return CaptureSession.open(
        rng=random.Random(seed),
        display_factory=lambda name: display,
    )


@pytest.fixture
def fake_display() -> FakeDisplay:
    return FakeDisplay()


@pytest.fixture
def session(fake_display) -> CaptureSession:
    return make_session(fake_display)
