"""
캡처 모듈 패키지

공통 데이터 타입 정의:
- ChannelLayout: 채널 하나의 비트 위치/폭
- PixelFormat: 디스플레이의 packed 픽셀 포맷 기술자
- RasterFrame: 캡처된 화면 한 장
"""

from dataclasses import dataclass

# 지원하는 픽셀당 비트 수
SUPPORTED_BITS_PER_PIXEL = (8, 16, 24, 32)


@dataclass(frozen=True)
class ChannelLayout:
    """
    packed 픽셀 워드 안에서 채널 하나가 차지하는 비트 영역입니다.

    필드:
        offset: 채널 최하위 비트의 위치 (예: 0xFF0000 → 16)
        width: 연속된 비트 수 (예: 0xFF0000 → 8)
    """
    offset: int
    width: int

    @property
    def mask(self) -> int:
        """이 채널의 비트 마스크를 반환합니다."""
        return ((1 << self.width) - 1) << self.offset

    @classmethod
    def from_mask(cls, mask: int) -> "ChannelLayout":
        """
        채널 비트 마스크로부터 ChannelLayout을 만듭니다.

        에러:
            ValueError: 마스크가 0이거나 비트가 연속되지 않을 때
        """
        if mask <= 0:
            raise ValueError(f"채널 마스크는 0보다 커야 합니다: 0x{mask:X}")
        offset = (mask & -mask).bit_length() - 1
        width = (mask >> offset).bit_length()
        if (mask >> offset) != (1 << width) - 1:
            raise ValueError(f"채널 마스크의 비트가 연속되지 않습니다: 0x{mask:X}")
        return cls(offset=offset, width=width)


@dataclass(frozen=True)
class PixelFormat:
    """
    디스플레이가 반환하는 packed 픽셀 포맷 기술자입니다.

    시작 시 디스플레이에서 한 번 조회하여 PixelNormalizer에 전달합니다.

    필드:
        bits_per_pixel: 픽셀당 비트 수 (8 | 16 | 24 | 32)
        byte_order: 픽셀 워드의 바이트 순서 ("little" | "big")
        red: 빨강 채널 레이아웃
        green: 초록 채널 레이아웃
        blue: 파랑 채널 레이아웃
    """
    bits_per_pixel: int
    byte_order: str
    red: ChannelLayout
    green: ChannelLayout
    blue: ChannelLayout

    @property
    def bytes_per_pixel(self) -> int:
        return self.bits_per_pixel // 8

    @classmethod
    def from_masks(
        cls,
        bits_per_pixel: int,
        byte_order: str,
        red_mask: int,
        green_mask: int,
        blue_mask: int,
    ) -> "PixelFormat":
        """
        디스플레이가 알려준 채널 마스크로 PixelFormat을 만듭니다.

        에러:
            ValueError: 지원하지 않는 bits_per_pixel/byte_order 또는 잘못된 마스크
        """
        if bits_per_pixel not in SUPPORTED_BITS_PER_PIXEL:
            raise ValueError(
                f"지원하지 않는 bits_per_pixel: {bits_per_pixel}. "
                f"지원 목록: {SUPPORTED_BITS_PER_PIXEL}"
            )
        if byte_order not in ("little", "big"):
            raise ValueError(f"byte_order는 'little' 또는 'big'이어야 합니다: {byte_order!r}")

        pixel_format = cls(
            bits_per_pixel=bits_per_pixel,
            byte_order=byte_order,
            red=ChannelLayout.from_mask(red_mask),
            green=ChannelLayout.from_mask(green_mask),
            blue=ChannelLayout.from_mask(blue_mask),
        )
        for name, layout in (("red", pixel_format.red), ("green", pixel_format.green), ("blue", pixel_format.blue)):
            if layout.offset + layout.width > bits_per_pixel:
                raise ValueError(
                    f"{name} 채널 마스크가 픽셀 폭({bits_per_pixel}bit)을 벗어납니다: 0x{layout.mask:X}"
                )
        return pixel_format


@dataclass
class RasterFrame:
    """
    캡처된 화면 한 장의 데이터 컨테이너입니다.

    매 반복마다 새로 만들어지고, 인코딩이 끝나면 버려집니다.

    필드:
        width: 가로 픽셀 수
        height: 세로 픽셀 수
        bytes_per_line: 스캔라인 하나의 바이트 수 (패딩 포함)
        pixel_format: packed 픽셀 포맷 (채널 마스크 포함)
        data: 원시 픽셀 데이터 (bytes, 길이 >= bytes_per_line * height)
    """
    width: int
    height: int
    bytes_per_line: int
    pixel_format: PixelFormat
    data: bytes
