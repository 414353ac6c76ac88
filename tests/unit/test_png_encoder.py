"""
PngEncoder 단위 테스트

검증 항목:
- signature + IHDR(8bit, color type 2, 인터레이스 없음) + IDAT + IEND 구조
- 청크 CRC 정상
- 압축 레벨이 파일 크기에 반영됨 (0 > 9)
- OpenCV로 디코딩 시 입력 RGB와 동일한 픽셀
- 행 수/행 길이 불일치 시 EncodeError, 최종 경로와 임시 파일 모두 남지 않음
- 기록 도중 실패해도 기존 파일은 그대로 유지
"""

from __future__ import annotations

import struct
import zlib

import cv2
import numpy as np
import pytest

from screenshot_daemon.imaging.png_encoder import (
    EncodeError,
    PngEncoder,
    temp_path_for,
)

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"


def _read_chunks(path) -> list[tuple[bytes, bytes]]:
    """PNG 파일을 (type, data) 청크 목록으로 분해하고 CRC를 검증합니다."""
    raw = path.read_bytes()
    assert raw[:8] == PNG_SIGNATURE
    chunks = []
    offset = 8
    while offset < len(raw):
        (length,) = struct.unpack(">I", raw[offset:offset + 4])
        chunk_type = raw[offset + 4:offset + 8]
        data = raw[offset + 8:offset + 8 + length]
        (crc,) = struct.unpack(">I", raw[offset + 8 + length:offset + 12 + length])
        assert crc == zlib.crc32(chunk_type + data) & 0xFFFFFFFF
        chunks.append((chunk_type, data))
        offset += 12 + length
    return chunks


def _solid_rows(width: int, height: int, rgb: bytes) -> list[bytes]:
    return [rgb * width for _ in range(height)]


class TestPngStructure:
    def test_chunk_layout(self, tmp_path):
        path = PngEncoder().encode(tmp_path / "a.png", 2, 2, _solid_rows(2, 2, b"\xFF\x00\x00"))
        chunks = _read_chunks(path)

        types = [chunk_type for chunk_type, _ in chunks]
        assert types[0] == b"IHDR"
        assert types[-1] == b"IEND"
        assert b"IDAT" in types

        width, height, depth, color, comp, flt, interlace = struct.unpack(">IIBBBBB", chunks[0][1])
        assert (width, height) == (2, 2)
        assert (depth, color, comp, flt, interlace) == (8, 2, 0, 0, 0)
        assert chunks[-1][1] == b""

    def test_returns_final_path_and_removes_temp(self, tmp_path):
        target = tmp_path / "b.png"
        result = PngEncoder().encode(target, 1, 1, [b"\x01\x02\x03"])
        assert result == target
        assert target.exists()
        assert not temp_path_for(target).exists()

    def test_temp_path_is_hidden_sibling(self, tmp_path):
        assert temp_path_for(tmp_path / "abcd1234.png") == tmp_path / ".abcd1234.png.tmp"


class TestPngDecoding:
    def test_solid_red_decodes_with_opencv(self, tmp_path):
        path = PngEncoder().encode(tmp_path / "red.png", 2, 2, _solid_rows(2, 2, b"\xFF\x00\x00"))
        image = cv2.imread(str(path), cv2.IMREAD_COLOR)
        assert image.shape == (2, 2, 3)
        # OpenCV는 BGR 순서
        assert (image == np.array([0, 0, 255], dtype=np.uint8)).all()

    def test_gradient_round_trip_with_opencv(self, tmp_path):
        width, height = 17, 9
        rgb = np.zeros((height, width, 3), dtype=np.uint8)
        rgb[..., 0] = np.arange(width, dtype=np.uint8)[None, :] * 15
        rgb[..., 1] = np.arange(height, dtype=np.uint8)[:, None] * 28
        rgb[..., 2] = 77
        rows = [rgb[y].tobytes() for y in range(height)]

        path = PngEncoder(compression_level=9).encode(tmp_path / "g.png", width, height, rows)
        decoded = cv2.imread(str(path), cv2.IMREAD_COLOR)

        np.testing.assert_array_equal(decoded[..., ::-1], rgb)

    def test_compression_level_zero_still_valid(self, tmp_path):
        path = PngEncoder(compression_level=0).encode(
            tmp_path / "z.png", 3, 2, _solid_rows(3, 2, b"\x10\x20\x30"),
        )
        image = cv2.imread(str(path), cv2.IMREAD_COLOR)
        assert tuple(image[1, 2]) == (0x30, 0x20, 0x10)


class TestCompressionLevel:
    def test_level_zero_is_larger_than_level_nine(self, tmp_path):
        rows = _solid_rows(64, 64, b"\x80\x40\x20")
        stored = PngEncoder(compression_level=0).encode(tmp_path / "l0.png", 64, 64, rows)
        packed = PngEncoder(compression_level=9).encode(tmp_path / "l9.png", 64, 64, rows)

        # 무압축은 최소한 원본 필터링 데이터(1 + 3 * 64 바이트 x 64행) 이상
        assert stored.stat().st_size >= 64 * (1 + 3 * 64)
        assert packed.stat().st_size < stored.stat().st_size


class TestEncodeErrors:
    def _assert_nothing_written(self, target):
        assert not target.exists()
        assert not temp_path_for(target).exists()

    def test_too_few_rows(self, tmp_path):
        target = tmp_path / "few.png"
        with pytest.raises(EncodeError, match="행이 부족합니다"):
            PngEncoder().encode(target, 2, 3, _solid_rows(2, 2, b"\x00\x00\x00"))
        self._assert_nothing_written(target)

    def test_too_many_rows(self, tmp_path):
        target = tmp_path / "many.png"
        with pytest.raises(EncodeError, match="행이 너무 많습니다"):
            PngEncoder().encode(target, 2, 1, _solid_rows(2, 2, b"\x00\x00\x00"))
        self._assert_nothing_written(target)

    def test_wrong_row_length(self, tmp_path):
        target = tmp_path / "len.png"
        with pytest.raises(EncodeError, match="길이"):
            PngEncoder().encode(target, 2, 1, [b"\x00" * 5])
        self._assert_nothing_written(target)

    def test_row_producer_failure_is_wrapped(self, tmp_path):
        target = tmp_path / "gen.png"

        def rows():
            yield b"\x00" * 6
            raise ValueError("bytes_per_line too small")

        with pytest.raises(EncodeError):
            PngEncoder().encode(target, 2, 2, rows())
        self._assert_nothing_written(target)

    def test_invalid_dimensions(self, tmp_path):
        with pytest.raises(EncodeError):
            PngEncoder().encode(tmp_path / "zero.png", 0, 1, [])

    def test_missing_directory(self, tmp_path):
        with pytest.raises(EncodeError, match="PNG 기록 실패"):
            PngEncoder().encode(tmp_path / "nope" / "x.png", 1, 1, [b"\x00\x00\x00"])

    def test_failure_keeps_existing_file(self, tmp_path):
        target = tmp_path / "keep.png"
        target.write_bytes(b"previous")
        with pytest.raises(EncodeError):
            PngEncoder().encode(target, 2, 2, _solid_rows(2, 1, b"\x00\x00\x00"))
        assert target.read_bytes() == b"previous"

    @pytest.mark.parametrize("kwargs", [
        {"compression_level": -1},
        {"compression_level": 10},
    ])
    def test_invalid_encoder_arguments(self, kwargs):
        with pytest.raises(ValueError):
            PngEncoder(**kwargs)
