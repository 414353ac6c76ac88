"""
스크린샷 저장 경로 할당 모듈입니다.

역할:
- 현재 로컬 시각으로 <base>/Screenshots/YYYY/MM/DD/HH 디렉토리 경로 계산
- 16진수 8자 무작위 파일 이름 생성 (세션의 난수 소스 사용)
- 디렉토리를 재귀적으로 생성 (이미 존재해도 에러 아님)

파일 이름 충돌 정책:
    무작위 32비트 이름만으로 구분하며 충돌 시 재시도하지 않습니다.
    같은 경로가 이미 있으면 경고 로그를 남기고 새 캡처로 덮어씁니다.

사용 예시:
    >>> allocator = PathAllocator(resolve_base_dir(), session.rng)
    >>> path = allocator.allocate()
"""

from __future__ import annotations

import logging
import os
import random
from datetime import datetime
from pathlib import Path
from typing import Mapping, Optional

logger = logging.getLogger(__name__)

HEX_ALPHABET = "0123456789abcdef"
RANDOM_NAME_LENGTH = 8
IMAGE_SUFFIX = ".png"
DEFAULT_ROOT_DIRNAME = "Screenshots"

# 파일 이름 충돌 시 동작: 기존 파일을 덮어씀
COLLISION_POLICY = "overwrite"


class StorageError(RuntimeError):
    """저장 디렉토리를 만들 수 없을 때 발생합니다. 해당 반복만 건너뜁니다."""


def resolve_base_dir(
    configured: str = "",
    environ: Optional[Mapping[str, str]] = None,
) -> Path:
    """
    스크린샷 기본 저장 디렉토리를 결정합니다.

    우선순위: 설정값 > $HOME > 현재 작업 디렉토리

    파라미터:
        configured: storage.base_dir 설정값 (빈 문자열이면 무시)
        environ: 환경변수 매핑 (None이면 os.environ)
    """
    if configured:
        return Path(configured).expanduser()
    environ = os.environ if environ is None else environ
    home = environ.get("HOME")
    if home:
        return Path(home)
    return Path(".")


class PathAllocator:
    """
    시각 기반 디렉토리와 무작위 파일 이름으로 캡처 경로를 만드는 클래스입니다.

    디렉토리는 경로 계산 시점에 생성되므로, 이후 캡처가 실패해도 남아 있습니다.
    """

    def __init__(
        self,
        base_dir: str | Path,
        rng: random.Random,
        root_dirname: str = DEFAULT_ROOT_DIRNAME,
        suffix: str = IMAGE_SUFFIX,
    ) -> None:
        """
        파라미터:
            base_dir: 기본 저장 디렉토리
            rng: 파일 이름 생성용 난수 소스 (CaptureSession.rng)
            root_dirname: 날짜 트리의 최상위 디렉토리 이름
            suffix: 파일 확장자
        """
        self._base_dir = Path(base_dir)
        self._rng = rng
        self._root_dirname = root_dirname
        self._suffix = suffix

    @property
    def root(self) -> Path:
        """날짜 트리의 최상위 디렉토리 (<base>/Screenshots)를 반환합니다."""
        return self._base_dir / self._root_dirname

    def directory_for(self, moment: datetime) -> Path:
        """주어진 시각의 저장 디렉토리 경로를 계산합니다. 디렉토리는 만들지 않습니다."""
        return (
            self.root
            / f"{moment.year:04d}"
            / f"{moment.month:02d}"
            / f"{moment.day:02d}"
            / f"{moment.hour:02d}"
        )

    def random_name(self) -> str:
        """16진수 소문자 8자로 된 무작위 이름을 반환합니다."""
        return "".join(self._rng.choice(HEX_ALPHABET) for _ in range(RANDOM_NAME_LENGTH))

    def allocate(self, moment: Optional[datetime] = None) -> Path:
        """
        캡처 파일 경로를 할당하고 디렉토리를 생성합니다.

        파라미터:
            moment: 기준 시각 (None이면 현재 로컬 시각)

        반환값:
            Path: <base>/Screenshots/YYYY/MM/DD/HH/<rand8>.png

        에러:
            StorageError: 디렉토리를 만들 수 없을 때
        """
        moment = moment if moment is not None else datetime.now()
        directory = self.directory_for(moment)

        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageError(f"저장 디렉토리를 만들 수 없습니다: {directory} ({exc})") from exc

        path = directory / f"{self.random_name()}{self._suffix}"
        if path.exists():
            logger.warning(f"파일 이름 충돌, 기존 파일을 덮어씁니다 (policy={COLLISION_POLICY}): {path}")
        return path
