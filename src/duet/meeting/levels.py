"""
Audio level metering for live UI feedback.

RMS / peak on a 0-100 scale, dB with a -60 floor, and an accumulator that
lets the per-frame capture thread report to a slower UI consumer.
"""

import math
import threading
from dataclasses import dataclass
from typing import Callable, Optional

import numpy as np

DB_FLOOR = -60.0


@dataclass(frozen=True)
class AudioLevel:
    """One level reading: rms/peak on a 0-100 scale, db clamped at -60."""
    rms: float
    peak: float
    db: float

    def to_dict(self) -> dict:
        return {"rms": self.rms, "peak": self.peak, "db": self.db}


SILENT_LEVEL = AudioLevel(rms=0.0, peak=0.0, db=DB_FLOOR)


def calculate_rms(samples) -> float:
    """Root mean square scaled to 0-100. Missing or empty input gives 0."""
    if samples is None:
        return 0.0
    audio = np.asarray(samples, dtype=np.float64)
    if audio.size == 0:
        return 0.0
    return float(np.sqrt(np.mean(audio ** 2)) * 100)


def calculate_peak(samples) -> float:
    """Maximum absolute sample scaled to 0-100. Missing or empty input gives 0."""
    if samples is None:
        return 0.0
    audio = np.asarray(samples, dtype=np.float64)
    if audio.size == 0:
        return 0.0
    return float(np.max(np.abs(audio)) * 100)


def linear_to_db(linear: float) -> float:
    """20*log10(linear), never below -60 dB."""
    if linear <= 0:
        return DB_FLOOR
    return max(DB_FLOOR, 20 * math.log10(linear))


def calculate_audio_level(samples) -> AudioLevel:
    """RMS, peak and dB for one frame."""
    rms = calculate_rms(samples)
    peak = calculate_peak(samples)
    return AudioLevel(rms=rms, peak=peak, db=linear_to_db(rms / 100))


def smooth_level(current: float, target: float, factor: float = 0.2) -> float:
    """Exponential moving average step; the caller keeps the state."""
    return current + (target - current) * factor


def clamp_level(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


@dataclass
class AudioLevelAccumulator:
    """Running RMS sum and peak over an averaging window."""
    rms_sum: float = 0.0
    frame_count: int = 0
    peak_level: float = 0.0

    def accumulate_frame(self, samples) -> None:
        level = calculate_audio_level(samples)
        self.rms_sum += level.rms
        self.frame_count += 1
        if level.peak > self.peak_level:
            self.peak_level = level.peak

    def flush(self) -> AudioLevel:
        """Average the window, reset it, and return the snapshot."""
        if self.frame_count == 0:
            return SILENT_LEVEL

        avg_rms = self.rms_sum / self.frame_count
        result = AudioLevel(
            rms=avg_rms,
            peak=self.peak_level,
            db=linear_to_db(avg_rms / 100)
        )

        self.rms_sum = 0.0
        self.frame_count = 0
        self.peak_level = 0.0
        return result


def create_accumulator() -> AudioLevelAccumulator:
    return AudioLevelAccumulator()


def accumulate_frame(accumulator: AudioLevelAccumulator, samples) -> None:
    accumulator.accumulate_frame(samples)


def flush_accumulator(accumulator: AudioLevelAccumulator) -> AudioLevel:
    return accumulator.flush()


class LevelMeter:
    """
    Thread-safe level meter for one source.

    The capture side calls add_frame() once per audio frame; every
    `report_interval` frames the averaged level is handed to `on_level`.
    A UI thread may call flush() at its own rate instead. Both paths share
    one lock so accumulate and flush never interleave.
    """

    def __init__(
        self,
        report_interval: int = 8,
        smoothing_factor: float = 0.2,
        on_level: Optional[Callable[[AudioLevel], None]] = None
    ):
        self.report_interval = max(1, int(report_interval))
        self.smoothing_factor = smoothing_factor
        self.on_level = on_level

        self._accumulator = AudioLevelAccumulator()
        self._lock = threading.Lock()
        self._frames_since_report = 0
        self._smoothed = 0.0
        self._last_level = SILENT_LEVEL

    @property
    def smoothed(self) -> float:
        """Smoothed RMS (0-100) for needle-style displays."""
        return self._smoothed

    @property
    def last_level(self) -> AudioLevel:
        return self._last_level

    def add_frame(self, samples) -> Optional[AudioLevel]:
        """Accumulate one frame. Returns the report when one was produced."""
        with self._lock:
            self._accumulator.accumulate_frame(samples)
            self._frames_since_report += 1
            if self._frames_since_report < self.report_interval:
                return None
            level = self._flush_locked()

        if self.on_level:
            self.on_level(level)
        return level

    def flush(self) -> AudioLevel:
        """Report whatever has accumulated since the last report."""
        with self._lock:
            if self._accumulator.frame_count == 0:
                return self._last_level
            return self._flush_locked()

    def reset(self) -> None:
        with self._lock:
            self._accumulator = AudioLevelAccumulator()
            self._frames_since_report = 0
            self._smoothed = 0.0
            self._last_level = SILENT_LEVEL

    def _flush_locked(self) -> AudioLevel:
        raw = self._accumulator.flush()
        level = AudioLevel(rms=clamp_level(raw.rms), peak=clamp_level(raw.peak), db=raw.db)
        self._frames_since_report = 0
        self._smoothed = smooth_level(self._smoothed, level.rms, self.smoothing_factor)
        self._last_level = level
        return level
