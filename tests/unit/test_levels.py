"""
Tests for level metering.
"""

import threading

import numpy as np
import pytest

from duet.meeting.levels import (
    AudioLevelAccumulator,
    LevelMeter,
    accumulate_frame,
    calculate_audio_level,
    calculate_peak,
    calculate_rms,
    clamp_level,
    create_accumulator,
    flush_accumulator,
    linear_to_db,
    smooth_level,
)


class TestLevelMath:
    """Tests for the pure level functions."""

    def test_rms_of_silence(self):
        assert calculate_rms([0, 0, 0]) == 0

    def test_rms_full_scale_alternating(self):
        """A full-scale square wave reads 100."""
        assert calculate_rms([1, -1, 1, -1]) == pytest.approx(100)

    def test_rms_empty(self):
        assert calculate_rms([]) == 0

    def test_missing_samples(self):
        """None reads as silence, not NaN."""
        assert calculate_rms(None) == 0
        assert calculate_peak(None) == 0
        assert calculate_audio_level(None).db == -60

    def test_peak(self):
        assert calculate_peak(np.array([0.1, -0.75, 0.5])) == pytest.approx(75)
        assert calculate_peak([]) == 0

    def test_db_bounds(self):
        """0 maps to the -60 floor and 1 to 0 dB."""
        assert linear_to_db(0) == -60
        assert linear_to_db(1) == 0
        assert linear_to_db(-0.5) == -60

    def test_db_floor_for_tiny_values(self):
        """Values below -60 dB are clamped."""
        assert linear_to_db(1e-9) == -60
        assert linear_to_db(0.1) == pytest.approx(-20)

    def test_audio_level(self):
        level = calculate_audio_level([0.5, -0.5])
        assert level.rms == pytest.approx(50)
        assert level.peak == pytest.approx(50)
        assert level.db == pytest.approx(20 * np.log10(0.5))

    def test_smooth_level(self):
        """Moves 20% of the way toward the target by default."""
        assert smooth_level(0, 100) == pytest.approx(20)
        assert smooth_level(50, 50) == 50
        assert smooth_level(0, 100, 1.0) == 100

    def test_clamp_level(self):
        assert clamp_level(150) == 100
        assert clamp_level(-5) == 0
        assert clamp_level(42) == 42


class TestAccumulator:
    """Tests for multi-frame accumulation."""

    def test_flush_averages_rms_and_keeps_max_peak(self):
        acc = create_accumulator()
        accumulate_frame(acc, [1, -1, 1, -1])   # rms 100, peak 100
        accumulate_frame(acc, [0, 0, 0, 0])     # rms 0, peak 0
        level = flush_accumulator(acc)
        assert level.rms == pytest.approx(50)
        assert level.peak == pytest.approx(100)
        assert level.db == pytest.approx(linear_to_db(0.5))

    def test_missing_frame_counts_as_silence(self):
        acc = create_accumulator()
        accumulate_frame(acc, None)
        accumulate_frame(acc, [0.5, -0.5])
        level = flush_accumulator(acc)
        assert level.rms == pytest.approx(25)
        assert level.peak == pytest.approx(50)
        assert not np.isnan(level.db)

    def test_flush_resets(self):
        """Accumulator is zeroed after a flush."""
        acc = AudioLevelAccumulator()
        acc.accumulate_frame([0.5, 0.5])
        acc.flush()
        assert acc.rms_sum == 0
        assert acc.frame_count == 0
        assert acc.peak_level == 0

    def test_flush_empty(self):
        """Flushing with no frames reports silence."""
        level = AudioLevelAccumulator().flush()
        assert (level.rms, level.peak, level.db) == (0, 0, -60)


class TestLevelMeter:
    """Tests for the thread-safe meter."""

    def test_reports_every_interval(self):
        """Should emit one report per `report_interval` frames."""
        reports = []
        meter = LevelMeter(report_interval=4, on_level=reports.append)
        for _ in range(9):
            meter.add_frame([0.5, -0.5])
        assert len(reports) == 2
        assert reports[0].rms == pytest.approx(50)

    def test_missing_frame_not_reported_as_full_scale(self):
        meter = LevelMeter(report_interval=2)
        meter.add_frame(None)
        level = meter.add_frame([0.5, -0.5])
        assert level.rms == pytest.approx(25)
        assert meter.smoothed == pytest.approx(5)

    def test_add_frame_returns_report(self):
        meter = LevelMeter(report_interval=2)
        assert meter.add_frame([0.1]) is None
        assert meter.add_frame([0.1]) is not None

    def test_smoothed_follows_reports(self):
        meter = LevelMeter(report_interval=1, smoothing_factor=0.5)
        meter.add_frame([1, -1])
        assert meter.smoothed == pytest.approx(50)
        meter.add_frame([1, -1])
        assert meter.smoothed == pytest.approx(75)

    def test_flush_without_new_frames_repeats_last_level(self):
        meter = LevelMeter(report_interval=100)
        meter.add_frame([0.5, -0.5])
        first = meter.flush()
        assert first.rms == pytest.approx(50)
        assert meter.flush() == first

    def test_reset(self):
        meter = LevelMeter(report_interval=1)
        meter.add_frame([1.0])
        meter.reset()
        assert meter.smoothed == 0
        assert meter.last_level.rms == 0

    def test_concurrent_accumulate_and_flush(self):
        """Frames added from one thread while another flushes are all counted once."""
        meter = LevelMeter(report_interval=10_000_000)
        frames = 2000
        flushed = []

        def producer():
            for _ in range(frames):
                meter.add_frame([1.0, -1.0])

        def consumer():
            for _ in range(200):
                flushed.append(meter.flush())

        threads = [threading.Thread(target=producer), threading.Thread(target=consumer)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        flushed.append(meter.flush())

        assert all(level.rms == pytest.approx(100) or level.rms == 0 for level in flushed)
