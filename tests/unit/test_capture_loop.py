"""
CaptureLoop 단위 테스트

검증 항목:
- 실패하거나 즉시 끝나는 반복은 start + k × interval에 시작 (가짜 단조 시계 기준)
- 연속 반복 시작 간격 >= interval, 연속 저장 간격 >= interval
- 작업이 주기를 넘기면 놓친 틱을 건너뜀 (몰아서 실행하지 않음)
- StorageError / CaptureError / EncodeError 발생 시 루프가 계속 진행
- FakeDisplay 기반 종단 간 테스트: 화면 크기 PNG가 날짜 경로에 저장됨
"""

from __future__ import annotations

import logging
import re
from unittest.mock import MagicMock

import cv2
import pytest

from screenshot_daemon.capture.frame_capturer import FrameCapturer
from screenshot_daemon.imaging.pixel_normalizer import PixelNormalizer
from screenshot_daemon.imaging.png_encoder import EncodeError, PngEncoder
from screenshot_daemon.scheduler.capture_loop import CaptureLoop
from screenshot_daemon.storage.path_allocator import PathAllocator

from conftest import FakeDisplay, make_session

DATE_PATH_PATTERN = re.compile(r"^Screenshots/\d{4}/\d{2}/\d{2}/\d{2}/[0-9a-f]{8}\.png$")


class FakeClock:
    """sleep() 호출 시에만 시간이 흐르는 가짜 단조 시계입니다."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds

    def advance(self, seconds: float) -> None:
        self.now += seconds


class TimedCapturer:
    """캡처 시작 시각을 기록하고, 캡처마다 지정된 시간만큼 시계를 진행시킵니다."""

    def __init__(self, inner: FrameCapturer, clock: FakeClock, durations: list[float]) -> None:
        self._inner = inner
        self._clock = clock
        self._durations = list(durations)
        self.started_at: list[float] = []

    def capture(self):
        self.started_at.append(self._clock.now)
        if self._durations:
            self._clock.advance(self._durations.pop(0))
        return self._inner.capture()


def _make_loop(tmp_path, display=None, interval_ms=100, clock=None, durations=(), encoder=None):
    session = make_session(display or FakeDisplay())
    clock = clock or FakeClock()
    capturer = TimedCapturer(FrameCapturer(session), clock, list(durations))
    loop = CaptureLoop(
        session=session,
        allocator=PathAllocator(tmp_path, session.rng),
        capturer=capturer,
        normalizer=PixelNormalizer(session.pixel_format),
        encoder=encoder or PngEncoder(),
        interval_ms=interval_ms,
        clock=clock,
        sleep=clock.sleep,
    )
    return loop, capturer, clock


class RecordingEncoder(PngEncoder):
    """인코딩이 끝난(파일이 저장된) 시각을 기록하는 인코더입니다."""

    def __init__(self, clock: FakeClock) -> None:
        super().__init__()
        self._clock = clock
        self.saved_at: list[float] = []

    def encode(self, path, width, height, rows):
        result = super().encode(path, width, height, rows)
        self.saved_at.append(self._clock.now)
        return result


def _gaps(times: list[float]) -> list[float]:
    return [b - a for a, b in zip(times, times[1:])]


class TestScheduling:
    def test_failed_iterations_start_on_absolute_deadlines(self, tmp_path):
        loop, capturer, _ = _make_loop(
            tmp_path, display=FakeDisplay(fail_captures=4), durations=[0.03, 0.02, 0.07, 0.01],
        )
        loop.run_forever(max_iterations=4)

        assert capturer.started_at == pytest.approx([0.0, 0.1, 0.2, 0.3])

    def test_instant_saves_start_on_absolute_deadlines(self, tmp_path):
        loop, capturer, _ = _make_loop(tmp_path)
        loop.run_forever(max_iterations=4)

        assert capturer.started_at == pytest.approx([0.0, 0.1, 0.2, 0.3])
        assert loop.stats.saved == 4

    def test_consecutive_starts_at_least_one_interval_apart(self, tmp_path):
        loop, capturer, _ = _make_loop(tmp_path, interval_ms=250, durations=[0.1, 0.3, 0.05, 0.6, 0.0])
        loop.run_forever(max_iterations=5)

        assert all(gap >= 0.25 - 1e-9 for gap in _gaps(capturer.started_at))

    def test_overrunning_iteration_skips_missed_ticks(self, tmp_path):
        loop, capturer, _ = _make_loop(tmp_path, durations=[0.25, 0.01, 0.01])
        loop.run_forever(max_iterations=3)

        # 저장 후 interval이 지나야 다음 캡처 시작
        assert capturer.started_at == pytest.approx([0.0, 0.35, 0.46])
        assert loop.stats.skipped_ticks == 2

    def test_overrunning_failed_iteration_resumes_on_grid(self, tmp_path):
        loop, capturer, _ = _make_loop(
            tmp_path, display=FakeDisplay(fail_captures=3), durations=[0.25, 0.01, 0.01],
        )
        loop.run_forever(max_iterations=3)

        assert capturer.started_at == pytest.approx([0.0, 0.3, 0.4])
        assert loop.stats.skipped_ticks == 2

    def test_short_saves_do_not_count_as_skipped_ticks(self, tmp_path):
        loop, _, _ = _make_loop(tmp_path, durations=[0.03] * 6)
        loop.run_forever(max_iterations=6)

        assert loop.stats.skipped_ticks == 0

    def test_skipped_ticks_logged_as_warning(self, tmp_path, caplog):
        loop, _, _ = _make_loop(tmp_path, durations=[0.35])
        with caplog.at_level(logging.WARNING):
            loop.run_forever(max_iterations=2)
        assert "틱을 건너뜀" in caplog.text

    def test_no_sleep_after_last_iteration(self, tmp_path):
        loop, _, clock = _make_loop(tmp_path, durations=[0.01, 0.01])
        loop.run_forever(max_iterations=2)
        assert len(clock.sleeps) == 1

    def test_non_positive_interval_rejected(self, tmp_path):
        with pytest.raises(ValueError):
            _make_loop(tmp_path, interval_ms=0)


class TestSaveSpacing:
    def test_slow_first_save_delays_next_save(self, tmp_path):
        clock = FakeClock()
        encoder = RecordingEncoder(clock)
        loop, _, _ = _make_loop(
            tmp_path, interval_ms=100, clock=clock, durations=[0.09, 0.0], encoder=encoder,
        )
        loop.run_forever(max_iterations=2)

        assert encoder.saved_at[0] == pytest.approx(0.09)
        assert encoder.saved_at[1] - encoder.saved_at[0] >= 0.1 - 1e-9

    def test_all_saves_at_least_one_interval_apart(self, tmp_path):
        clock = FakeClock()
        encoder = RecordingEncoder(clock)
        loop, _, _ = _make_loop(
            tmp_path, interval_ms=250, clock=clock,
            durations=[0.1, 0.3, 0.05, 0.6, 0.0, 0.24, 0.2], encoder=encoder,
        )
        loop.run_forever(max_iterations=7)

        assert len(encoder.saved_at) == 7
        assert all(gap >= 0.25 - 1e-9 for gap in _gaps(encoder.saved_at))

    def test_failed_iteration_does_not_reset_spacing(self, tmp_path):
        clock = FakeClock()
        encoder = RecordingEncoder(clock)
        loop, _, _ = _make_loop(
            tmp_path, display=FakeDisplay(fail_captures=1), interval_ms=100, clock=clock,
            durations=[0.0, 0.0, 0.09, 0.0], encoder=encoder,
        )
        loop.run_forever(max_iterations=4)

        assert loop.stats.capture_failures == 1
        assert all(gap >= 0.1 - 1e-9 for gap in _gaps(encoder.saved_at))


class TestFailuresAbsorbed:
    def test_capture_failures_do_not_stop_loop(self, tmp_path):
        loop, _, _ = _make_loop(tmp_path, display=FakeDisplay(fail_captures=2))
        loop.run_forever(max_iterations=4)

        assert loop.stats.iterations == 4
        assert loop.stats.capture_failures == 2
        assert loop.stats.saved == 2

    def test_encode_failure_counted(self, tmp_path):
        encoder = MagicMock()
        encoder.encode.side_effect = [EncodeError("disk full"), tmp_path / "ok.png"]
        loop, _, _ = _make_loop(tmp_path, encoder=encoder)

        assert loop.run_once() is None
        assert loop.run_once() is not None
        assert loop.stats.encode_failures == 1
        assert loop.stats.saved == 1

    def test_storage_failure_skips_capture(self, tmp_path):
        (tmp_path / "Screenshots").write_text("blocked")
        display = FakeDisplay()
        loop, _, _ = _make_loop(tmp_path, display=display)

        assert loop.run_once() is None
        assert loop.stats.storage_failures == 1
        assert display.get_image_calls == 0


class TestEndToEnd:
    def test_saves_screen_sized_pngs_under_date_tree(self, tmp_path, caplog):
        display = FakeDisplay(width=6, height=5, pixel_word=0x112233)
        loop, _, _ = _make_loop(tmp_path, display=display, interval_ms=100)

        with caplog.at_level(logging.INFO):
            loop.run_forever(max_iterations=3)

        files = sorted(tmp_path.rglob("*.png"))
        assert len(files) == 3
        for path in files:
            assert DATE_PATH_PATTERN.match(path.relative_to(tmp_path).as_posix())
            image = cv2.imread(str(path), cv2.IMREAD_COLOR)
            assert image.shape == (5, 6, 3)
            assert tuple(image[0, 0]) == (0x33, 0x22, 0x11)

        assert not list(tmp_path.rglob("*.tmp"))
        assert caplog.text.count("스크린샷 저장 완료") == 3
        assert loop.stats.last_saved_path in files
