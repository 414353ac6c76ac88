"""
캡처 스케줄러 루프 모듈입니다.

역할:
- 고정 주기로 경로 할당 → 캡처 → 정규화 → 인코딩을 반복
- 반복 단위 실패(StorageError / CaptureError / EncodeError)는 로그만 남기고 다음 틱으로 진행
- 단조 시계 기준 마감 시각(직전 마감 + interval)으로 대기 (sleep 오차가 누적되지 않음)
- 연속된 두 저장 사이 간격은 항상 interval 이상 (직전 저장 시각 + interval 전에는 시작하지 않음)
- 작업이 한 주기 이상 걸리면 놓친 틱은 건너뜀 (몰아서 따라잡지 않음)

상태:
    "running" 하나뿐이며, 외부에서 프로세스를 종료할 때까지 빠져나오지 않습니다.
    한 번에 한 프레임만 처리하고 큐잉/중첩이 없습니다.

사용 예시:
    >>> loop = CaptureLoop(session, allocator, capturer, normalizer, encoder, interval_ms=1000)
    >>> loop.run_forever()
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from screenshot_daemon.capture.frame_capturer import CaptureSession, FrameCapturer
from screenshot_daemon.capture.xlib_bindings import CaptureError
from screenshot_daemon.imaging.pixel_normalizer import PixelNormalizer
from screenshot_daemon.imaging.png_encoder import EncodeError, PngEncoder
from screenshot_daemon.logging.structured_logger import SAVE_LOGGER_NAME
from screenshot_daemon.storage.path_allocator import PathAllocator, StorageError

logger = logging.getLogger(__name__)
# 저장 완료 한 줄 출력 전용 (stdout, log_level과 무관)
save_logger = logging.getLogger(SAVE_LOGGER_NAME)


@dataclass
class LoopStats:
    """
    스케줄러 루프 통계입니다. 로그 출력용이며 루프 동작에 영향을 주지 않습니다.

    필드:
        iterations: 실행한 반복 수
        saved: 저장 성공 수
        capture_failures: CaptureError 발생 수
        encode_failures: EncodeError 발생 수
        storage_failures: StorageError 발생 수
        skipped_ticks: 작업이 길어져 건너뛴 틱 수
        last_saved_path: 마지막으로 저장한 파일 경로
    """
    iterations: int = 0
    saved: int = 0
    capture_failures: int = 0
    encode_failures: int = 0
    storage_failures: int = 0
    skipped_ticks: int = 0
    last_saved_path: Optional[Path] = None


class CaptureLoop:
    """
    캡처 → 정규화 → 인코딩 → 대기를 반복하는 스케줄러입니다.

    시계(clock)와 대기 함수(sleep)는 테스트에서 교체할 수 있습니다.
    """

    def __init__(
        self,
        session: CaptureSession,
        allocator: PathAllocator,
        capturer: FrameCapturer,
        normalizer: PixelNormalizer,
        encoder: PngEncoder,
        interval_ms: int,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """
        파라미터:
            session: 캡처 세션 (해상도 참조)
            allocator: 저장 경로 할당기
            capturer: 프레임 캡처기
            normalizer: 픽셀 정규화기
            encoder: PNG 인코더
            interval_ms: 반복 시작 간격 (ms, 양수)
            clock: 단조 시계 (초 단위 float)
            sleep: 대기 함수 (초 단위)
        """
        if interval_ms <= 0:
            raise ValueError(f"interval_ms는 양수여야 합니다: {interval_ms}")

        self._session = session
        self._allocator = allocator
        self._capturer = capturer
        self._normalizer = normalizer
        self._encoder = encoder
        self._interval_sec = interval_ms / 1000.0
        self._clock = clock
        self._sleep = sleep
        self._stats = LoopStats()

    @property
    def stats(self) -> LoopStats:
        return self._stats

    def run_once(self) -> Optional[Path]:
        """
        한 번의 캡처 반복을 수행합니다.

        반환값:
            Optional[Path]: 저장 성공 시 파일 경로, 실패 시 None
        """
        stats = self._stats
        stats.iterations += 1

        try:
            path = self._allocator.allocate()
        except StorageError as exc:
            stats.storage_failures += 1
            logger.error(f"저장 경로 할당 실패: {exc}")
            return None

        try:
            frame = self._capturer.capture()
        except CaptureError as exc:
            stats.capture_failures += 1
            logger.error(f"스크린샷 캡처 실패: {exc}")
            return None

        try:
            self._encoder.encode(
                path,
                frame.width,
                frame.height,
                self._normalizer.iter_rows(frame),
            )
        except EncodeError as exc:
            stats.encode_failures += 1
            logger.error(f"PNG 저장 실패: {exc}")
            return None

        stats.saved += 1
        stats.last_saved_path = path
        save_logger.info(f"스크린샷 저장 완료: {path}")
        return path

    def run_forever(self, max_iterations: Optional[int] = None) -> None:
        """
        캡처 루프를 실행합니다.

        다음 시작 시각은 직전 마감 + interval이며, 직전 저장 시각 + interval보다
        이르면 그 시각으로 미룹니다 (이후 마감은 미룬 시각 기준).
        실패한 반복은 저장 시각을 갱신하지 않습니다.
        max_iterations는 테스트/임베딩 용도이며, None이면 끝나지 않습니다.
        """
        interval = self._interval_sec
        deadline = self._clock()
        iterations = 0
        last_saved_at: Optional[float] = None

        logger.info(
            f"캡처 루프 시작: interval={interval * 1000:.0f}ms, "
            f"size={self._session.width}x{self._session.height}"
        )

        while True:
            saved_path = self.run_once()
            iterations += 1

            now = self._clock()
            if saved_path is not None:
                last_saved_at = now

            next_deadline = deadline + interval
            if now > next_deadline:
                # 이미 지난 마감은 건너뛰고 now 이후 가장 이른 마감으로
                skipped = max(1, int((now - deadline) // interval))
                next_deadline = deadline + (skipped + 1) * interval
                self._stats.skipped_ticks += skipped
                logger.warning(
                    f"작업 시간이 주기를 초과하여 {skipped}개 틱을 건너뜀 "
                    f"(누적 {self._stats.skipped_ticks})"
                )
            if last_saved_at is not None:
                next_deadline = max(next_deadline, last_saved_at + interval)
            deadline = next_deadline

            logger.debug(
                f"루프 통계: iterations={self._stats.iterations}, saved={self._stats.saved}, "
                f"capture_failures={self._stats.capture_failures}, "
                f"encode_failures={self._stats.encode_failures}, "
                f"storage_failures={self._stats.storage_failures}"
            )

            if max_iterations is not None and iterations >= max_iterations:
                break

            delay = deadline - self._clock()
            if delay > 0:
                self._sleep(delay)
