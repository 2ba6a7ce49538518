"""
Merges the microphone and system loopback streams into one recording.

Stereo output puts the microphone on the left and system audio on the right;
mono output mixes both. Chunks are buffered in memory until stop(), which is
the only place the WAV file is written.
"""

import threading
import time
from dataclasses import dataclass, replace
from pathlib import Path
from typing import List, Optional

import numpy as np

from ..logger import log_exception, log_warning
from ..utils import ConfigManager
from .samples import to_float32
from .wav import write_wav

MIX_HEADROOM = 0.6  # keeps a two-source mono mix from clipping near full scale
MIN_GAIN = 0.0
MAX_GAIN = 2.0


def clamp_gain(gain: float) -> float:
    return max(MIN_GAIN, min(MAX_GAIN, float(gain)))


@dataclass(frozen=True)
class MergeOptions:
    """Mixing parameters for one recording session."""
    microphone_gain: float = 1.0
    system_audio_gain: float = 0.8
    output_sample_rate: int = 16000
    output_channels: int = 2  # Stereo: mic on left, system on right
    max_buffered_seconds: Optional[float] = None

    def __post_init__(self):
        if self.output_channels not in (1, 2):
            raise ValueError(f"output_channels must be 1 or 2, got {self.output_channels}")
        if self.output_sample_rate <= 0:
            raise ValueError(f"output_sample_rate must be positive, got {self.output_sample_rate}")
        object.__setattr__(self, 'microphone_gain', clamp_gain(self.microphone_gain))
        object.__setattr__(self, 'system_audio_gain', clamp_gain(self.system_audio_gain))

    @classmethod
    def from_config(cls, **overrides) -> "MergeOptions":
        """Build options from the merge_options config section."""
        section = ConfigManager.get_config_section('merge_options')
        values = {
            'microphone_gain': section.get('microphone_gain', 1.0),
            'system_audio_gain': section.get('system_audio_gain', 0.8),
            'output_sample_rate': section.get('output_sample_rate', 16000),
            'output_channels': section.get('output_channels', 2),
            'max_buffered_seconds': section.get('max_buffered_seconds'),
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


@dataclass(frozen=True)
class MergedAudioResult:
    """A finished merged recording."""
    file_path: str
    duration: float  # Wall-clock seconds between start() and stop()
    sample_rate: int
    channels: int


def _flatten(chunks: List[np.ndarray]) -> np.ndarray:
    if not chunks:
        return np.zeros(0, dtype=np.float32)
    return np.concatenate(chunks).astype(np.float32, copy=False)


def _pad(samples: np.ndarray, length: int) -> np.ndarray:
    if samples.size >= length:
        return samples
    return np.concatenate([samples, np.zeros(length - samples.size, dtype=np.float32)])


class AudioMerger:
    """
    Buffers microphone and system chunks and mixes them on stop().

    States: idle -> start() -> recording -> stop() -> idle. Every public
    method takes the instance lock, so a capture drain thread and a control
    thread can share one merger.

    Usage:
        merger = AudioMerger(output_dir="recordings")
        merger.start()
        merger.add_microphone_chunk(mic_block)
        merger.add_system_chunk(system_block)
        result = merger.stop()
    """

    def __init__(
        self,
        options: Optional[MergeOptions] = None,
        output_dir=None,
        **overrides
    ):
        if options is None:
            options = MergeOptions.from_config(**overrides)
        else:
            overrides = {k: v for k, v in overrides.items() if v is not None}
            if overrides:
                options = replace(options, **overrides)
        self.options = options

        if output_dir is None:
            output_dir = ConfigManager.get_config_value('merge_options', 'recordings_folder') or "recordings"
        self.output_dir = Path(output_dir)

        self._lock = threading.RLock()
        self._microphone_buffer: List[np.ndarray] = []
        self._system_buffer: List[np.ndarray] = []
        self._microphone_samples = 0
        self._system_samples = 0
        self._capped_sources: set = set()
        self._is_recording = False
        self._start_time = 0.0
        self.last_error: Optional[Exception] = None

    @property
    def is_recording(self) -> bool:
        return self._is_recording

    def start(self) -> None:
        """Start a new recording. Restarting while recording discards the buffered audio."""
        with self._lock:
            if self._is_recording:
                log_warning(
                    f"AudioMerger.start() while recording: discarding "
                    f"{len(self._microphone_buffer)} mic / {len(self._system_buffer)} system chunks"
                )
                ConfigManager.console_print("[Merger] Restarted while recording; previous audio discarded")
            self._reset_buffers()
            self._is_recording = True
            self._start_time = time.monotonic()
            self.last_error = None
        ConfigManager.console_print("[Merger] Started recording")

    def stop(self) -> Optional[MergedAudioResult]:
        """
        Stop recording and write the merged WAV.

        Returns None when not recording, when nothing was captured, or when
        the file could not be written. After a write failure the buffers are
        kept so save() can retry.
        """
        with self._lock:
            if not self._is_recording:
                return None

            self._is_recording = False
            duration = time.monotonic() - self._start_time

            merged = self._merge_buffers()
            if merged.size == 0:
                ConfigManager.console_print("[Merger] No audio to merge")
                return None

            file_path = self.output_dir / f"unified_{int(time.time() * 1000)}.wav"
            return self._write(file_path, merged, duration)

    def save(self, file_path=None) -> Optional[MergedAudioResult]:
        """
        Write whatever is buffered without changing the recording state.

        Used to retry after stop() failed to write. Duration is derived from
        the buffered sample count.
        """
        with self._lock:
            merged = self._merge_buffers()
            if merged.size == 0:
                return None
            if file_path is None:
                file_path = self.output_dir / f"unified_{int(time.time() * 1000)}.wav"
            frames = merged.size // self.options.output_channels
            duration = frames / self.options.output_sample_rate
            return self._write(Path(file_path), merged, duration)

    def add_microphone_chunk(self, samples) -> None:
        """Append a copy of a microphone block. Ignored while idle."""
        self._add_chunk('microphone', samples)

    def add_system_chunk(self, samples) -> None:
        """Append a copy of a system-audio block. Ignored while idle."""
        self._add_chunk('system', samples)

    def merge(self) -> np.ndarray:
        """Interleaved stereo: left = microphone * gain, right = system * gain."""
        with self._lock:
            mic = _flatten(self._microphone_buffer)
            system = _flatten(self._system_buffer)

            max_length = max(mic.size, system.size)
            if max_length == 0:
                return np.zeros(0, dtype=np.float32)

            stereo = np.empty(max_length * 2, dtype=np.float32)
            stereo[0::2] = np.clip(_pad(mic, max_length) * self.options.microphone_gain, -1.0, 1.0)
            stereo[1::2] = np.clip(_pad(system, max_length) * self.options.system_audio_gain, -1.0, 1.0)
            return stereo

    def merge_mono(self) -> np.ndarray:
        """Both sources mixed into one channel with headroom."""
        with self._lock:
            mic = _flatten(self._microphone_buffer)
            system = _flatten(self._system_buffer)

            max_length = max(mic.size, system.size)
            if max_length == 0:
                return np.zeros(0, dtype=np.float32)

            mixed = (_pad(mic, max_length) * self.options.microphone_gain
                     + _pad(system, max_length) * self.options.system_audio_gain) * MIX_HEADROOM
            return np.clip(mixed, -1.0, 1.0).astype(np.float32)

    def get_buffer_stats(self) -> dict:
        """Current buffer sizes (for monitoring)."""
        with self._lock:
            return {
                "microphone_chunks": len(self._microphone_buffer),
                "system_chunks": len(self._system_buffer),
                "microphone_samples": self._microphone_samples,
                "system_samples": self._system_samples,
                "is_recording": self._is_recording,
            }

    def clear(self) -> None:
        """Drop all buffered audio without producing a result."""
        with self._lock:
            self._reset_buffers()

    def set_gains(self, microphone_gain: float, system_audio_gain: float) -> None:
        """Set both gains, clamped to [0, 2]."""
        with self._lock:
            self.options = replace(
                self.options,
                microphone_gain=clamp_gain(microphone_gain),
                system_audio_gain=clamp_gain(system_audio_gain)
            )

    def _add_chunk(self, source: str, samples) -> None:
        with self._lock:
            if not self._is_recording:
                return

            chunk = to_float32(samples)
            if chunk.size == 0:
                return

            buffered = self._microphone_samples if source == 'microphone' else self._system_samples
            cap = self._sample_cap()
            if cap is not None and buffered + chunk.size > cap:
                if source not in self._capped_sources:
                    self._capped_sources.add(source)
                    log_warning(f"AudioMerger: {source} buffer reached {self.options.max_buffered_seconds}s cap; dropping audio")
                    ConfigManager.console_print(f"[Merger] {source} buffer full, dropping further audio")
                return

            if source == 'microphone':
                self._microphone_buffer.append(chunk)
                self._microphone_samples += chunk.size
            else:
                self._system_buffer.append(chunk)
                self._system_samples += chunk.size

    def _sample_cap(self) -> Optional[int]:
        seconds = self.options.max_buffered_seconds
        if not seconds or seconds <= 0:
            return None
        return int(seconds * self.options.output_sample_rate)

    def _merge_buffers(self) -> np.ndarray:
        if self.options.output_channels == 1:
            return self.merge_mono()
        return self.merge()

    def _write(self, file_path: Path, merged: np.ndarray, duration: float) -> Optional[MergedAudioResult]:
        try:
            write_wav(file_path, merged, self.options.output_sample_rate, self.options.output_channels)
        except Exception as e:
            self.last_error = e
            log_exception(e, f"writing merged WAV to {file_path}")
            ConfigManager.console_print(f"[Merger] Failed to write WAV file: {e}")
            return None

        self.last_error = None
        ConfigManager.console_print(f"[Merger] Wrote merged audio to: {file_path}")
        return MergedAudioResult(
            file_path=str(file_path),
            duration=duration,
            sample_rate=self.options.output_sample_rate,
            channels=self.options.output_channels,
        )

    def _reset_buffers(self) -> None:
        self._microphone_buffer = []
        self._system_buffer = []
        self._microphone_samples = 0
        self._system_samples = 0
        self._capped_sources = set()
