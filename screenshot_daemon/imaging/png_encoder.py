"""
PNG 인코더 모듈입니다.

역할:
- RGB 행을 위에서 아래 순서로 받아 (height, width, 3) 배열로 조립
  (행 수/행 길이는 받는 즉시 검증)
- OpenCV(cv2.imencode)로 8bit RGB PNG 인코딩 (인터레이스 없음)
- 같은 디렉토리의 임시 파일에 쓴 뒤 성공 시에만 최종 경로로 rename
  (실패/중단 시 최종 경로에 깨진 파일이 남지 않음)

사용 예시:
    >>> encoder = PngEncoder(compression_level=6)
    >>> encoder.encode(path, width, height, normalizer.iter_rows(frame))
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Iterable

import cv2
import numpy as np

logger = logging.getLogger(__name__)

_TEMP_SUFFIX = ".tmp"


class EncodeError(RuntimeError):
    """PNG 인코딩/파일 쓰기 실패 시 발생합니다. 해당 반복만 건너뜁니다."""


def temp_path_for(path: Path) -> Path:
    """최종 경로와 같은 디렉토리에 있는 숨김 임시 파일 경로를 반환합니다."""
    return path.with_name(f".{path.name}{_TEMP_SUFFIX}")


class PngEncoder:
    """
    RGB 행 스트림을 PNG 파일로 기록하는 인코더입니다.

    인코더 자체는 상태를 갖지 않으므로 반복마다 재사용할 수 있습니다.
    """

    def __init__(self, compression_level: int = 6) -> None:
        """
        파라미터:
            compression_level: PNG(zlib) 압축 레벨 (0~9)
        """
        if not 0 <= compression_level <= 9:
            raise ValueError(f"compression_level은 0~9 범위여야 합니다: {compression_level}")
        self._params = [cv2.IMWRITE_PNG_COMPRESSION, compression_level]

    def encode(
        self,
        path: str | Path,
        width: int,
        height: int,
        rows: Iterable[bytes],
    ) -> Path:
        """
        RGB 행을 받아 PNG 파일을 완성합니다.

        rows는 위에서 아래 순서로 정확히 height개의 행을 내야 하며,
        각 행의 길이는 3 × width여야 합니다.

        반환값:
            Path: 기록된 최종 파일 경로

        에러:
            EncodeError: 행 검증, 인코딩, 파일 쓰기 중 어느 단계에서든 실패 시
                (임시 파일은 삭제되고 최종 경로는 건드리지 않음)
        """
        final_path = Path(path)
        if width <= 0 or height <= 0:
            raise EncodeError(f"이미지 크기가 올바르지 않습니다: {width}x{height}")

        try:
            rgb = _assemble_rows(width, height, rows)
            ok, encoded = cv2.imencode(
                ".png", cv2.cvtColor(rgb, cv2.COLOR_RGB2BGR), self._params,
            )
        except EncodeError:
            raise
        except (ValueError, cv2.error) as exc:
            raise EncodeError(f"PNG 인코딩 실패: {final_path} ({exc})") from exc
        if not ok:
            raise EncodeError(f"PNG 인코딩 실패: {final_path}")

        temp_path = temp_path_for(final_path)
        try:
            with open(temp_path, "wb") as stream:
                stream.write(encoded.tobytes())
            os.replace(temp_path, final_path)
        except OSError as exc:
            _remove_quietly(temp_path)
            raise EncodeError(f"PNG 기록 실패: {final_path} ({exc})") from exc

        logger.debug(f"PNG 인코딩 완료: {final_path} ({width}x{height}, {encoded.size} bytes)")
        return final_path


def _assemble_rows(width: int, height: int, rows: Iterable[bytes]) -> np.ndarray:
    """
    행 스트림을 (height, width, 3) uint8 배열로 모읍니다.

    에러:
        EncodeError: 행이 너무 많거나 적을 때, 행 길이가 3 × width가 아닐 때
    """
    row_length = 3 * width
    image = np.empty((height, row_length), dtype=np.uint8)

    row_count = 0
    for row in rows:
        if row_count >= height:
            raise EncodeError(f"행이 너무 많습니다: height={height}")
        if len(row) != row_length:
            raise EncodeError(
                f"행 {row_count}의 길이가 올바르지 않습니다: {len(row)} != {row_length}"
            )
        image[row_count] = np.frombuffer(row, dtype=np.uint8)
        row_count += 1

    if row_count != height:
        raise EncodeError(f"행이 부족합니다: {row_count} / {height}")
    return image.reshape(height, width, 3)


def _remove_quietly(path: Path) -> None:
    """임시 파일을 삭제합니다. 이미 없으면 무시합니다."""
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    except OSError as exc:
        logger.warning(f"임시 파일 삭제 실패: {path} ({exc})")
