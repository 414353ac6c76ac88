"""
packed 픽셀 → 8bit RGB 변환 모듈입니다.

역할:
- RasterFrame의 스캔라인을 위에서 아래로 하나씩 읽어 R,G,B 바이트열로 변환
- 채널별 비트 위치/폭은 시작 시 디스플레이에서 조회한 PixelFormat을 따름
  (24bit 0xFF0000/0xFF00/0xFF 레이아웃을 가정하지 않음)
- 8bit가 아닌 채널은 8bit로 스케일 (넓으면 상위 8비트, 좁으면 반올림 스케일)
- 알파 채널은 읽지도 쓰지도 않음

변환 흐름 (스캔라인 단위, numpy 벡터화):
    bytes_per_line 슬라이스 → 픽셀 워드 배열 → (word & mask) >> offset → 8bit 스케일
    → (width, 3) uint8 → bytes (길이 3 × width)
"""

from __future__ import annotations

import logging
from typing import Iterator

import numpy as np

from screenshot_daemon.capture import ChannelLayout, PixelFormat, RasterFrame

logger = logging.getLogger(__name__)


class PixelNormalizer:
    """PixelFormat 기술자에 따라 packed 픽셀을 RGB로 변환하는 클래스입니다."""

    def __init__(self, pixel_format: PixelFormat) -> None:
        self._pixel_format = pixel_format
        self._channels = (pixel_format.red, pixel_format.green, pixel_format.blue)

        endian = "<" if pixel_format.byte_order == "little" else ">"
        # 24bit는 numpy 기본 타입이 없으므로 _decode_words()에서 따로 조립
        self._word_dtype = {
            8: np.dtype(np.uint8),
            16: np.dtype(f"{endian}u2"),
            32: np.dtype(f"{endian}u4"),
        }.get(pixel_format.bits_per_pixel)

    @property
    def pixel_format(self) -> PixelFormat:
        return self._pixel_format

    def normalize_pixel(self, word: int) -> tuple[int, int, int]:
        """packed 픽셀 워드 하나를 (R, G, B)로 변환합니다."""
        rgb = self._normalize_words(np.array([word], dtype=np.uint32))
        return int(rgb[0, 0]), int(rgb[0, 1]), int(rgb[0, 2])

    def iter_rows(self, frame: RasterFrame) -> Iterator[bytes]:
        """
        프레임의 스캔라인을 위에서 아래로 RGB 바이트열로 변환하여 하나씩 반환합니다.

        정확히 frame.height개의 행을 만들며, 각 행의 길이는 3 × frame.width입니다.
        """
        bytes_per_pixel = self._pixel_format.bytes_per_pixel
        row_span = frame.width * bytes_per_pixel
        if row_span > frame.bytes_per_line:
            raise ValueError(
                f"bytes_per_line({frame.bytes_per_line})이 "
                f"한 행의 픽셀 바이트 수({row_span})보다 작습니다"
            )

        buffer = np.frombuffer(frame.data, dtype=np.uint8)
        for y in range(frame.height):
            start = y * frame.bytes_per_line
            words = self._decode_words(buffer[start:start + row_span])
            yield self._normalize_words(words).tobytes()

    # =========================================================================
    # 내부 헬퍼
    # =========================================================================

    def _decode_words(self, row: np.ndarray) -> np.ndarray:
        """한 행의 바이트 배열을 uint32 픽셀 워드 배열로 변환합니다."""
        if self._word_dtype is not None:
            return row.view(self._word_dtype).astype(np.uint32)

        # 24bit packed: 3바이트씩 묶어 조립
        triplets = row.reshape(-1, 3).astype(np.uint32)
        if self._pixel_format.byte_order == "little":
            return triplets[:, 0] | (triplets[:, 1] << 8) | (triplets[:, 2] << 16)
        return (triplets[:, 0] << 16) | (triplets[:, 1] << 8) | triplets[:, 2]

    def _normalize_words(self, words: np.ndarray) -> np.ndarray:
        """픽셀 워드 배열을 (N, 3) uint8 RGB 배열로 변환합니다."""
        rgb = np.empty((words.shape[0], 3), dtype=np.uint8)
        for index, layout in enumerate(self._channels):
            rgb[:, index] = _extract_channel(words, layout)
        return rgb


def _extract_channel(words: np.ndarray, layout: ChannelLayout) -> np.ndarray:
    """
    픽셀 워드 배열에서 채널 하나를 꺼내 8bit로 스케일합니다.

    - 8bit 채널: (word & mask) >> offset 그대로
    - 8bit 초과: 상위 8비트만 사용
    - 8bit 미만: 0 → 0, 최대값 → 255가 되도록 반올림 스케일
    """
    values = (words & np.uint32(layout.mask)) >> np.uint32(layout.offset)
    if layout.width == 8:
        return values.astype(np.uint8)
    if layout.width > 8:
        return (values >> np.uint32(layout.width - 8)).astype(np.uint8)

    max_value = (1 << layout.width) - 1
    return ((values * 255 + max_value // 2) // max_value).astype(np.uint8)
