"""
Recording session: one capture, one merger, one level meter per source.

A daemon thread drains the capture queues into the merger and the level
meters. stop() shuts capture down, drains what is left, and only then lets
the merger write the WAV file.
"""

import threading
from typing import Callable, Dict, Optional

from ..logger import log_debug, log_exception, log_warning
from ..utils import ConfigManager
from .capture import MICROPHONE, SYSTEM, AudioCapture
from .levels import AudioLevel, LevelMeter
from .merger import AudioMerger, MergedAudioResult
from .samples import to_float32


class RecordingSession:
    """
    Owns the objects for one recording and moves audio between them.

    `capture` may be any object with start() -> bool, stop() and
    drain(source, timeout) -> list of chunks; pass capture=None to feed
    audio with push() instead (host-driven callbacks, tests).
    """

    def __init__(
        self,
        merger: Optional[AudioMerger] = None,
        capture=None,
        on_level: Optional[Callable[[str, AudioLevel], None]] = None,
        report_interval: Optional[int] = None,
        smoothing_factor: Optional[float] = None,
        poll_timeout: float = 0.05
    ):
        meter_options = ConfigManager.get_config_section('level_meter')
        if report_interval is None:
            report_interval = meter_options.get('report_interval', 8)
        if smoothing_factor is None:
            smoothing_factor = meter_options.get('smoothing_factor', 0.2)

        self.merger = merger or AudioMerger()
        self.capture = capture
        self.on_level = on_level
        self.poll_timeout = poll_timeout

        self.meters: Dict[str, LevelMeter] = {
            source: LevelMeter(
                report_interval=report_interval,
                smoothing_factor=smoothing_factor,
                on_level=self._level_reporter(source)
            )
            for source in (MICROPHONE, SYSTEM)
        }

        self._running = False
        self._drain_thread: Optional[threading.Thread] = None
        self.join_timeout = 2.0
        self._stats_lock = threading.Lock()
        self._chunks_received = {MICROPHONE: 0, SYSTEM: 0}

    @classmethod
    def with_device_capture(cls, **kwargs) -> "RecordingSession":
        """Session backed by the default sounddevice capture."""
        capture_options = ConfigManager.get_config_section('capture_options')
        merger = kwargs.pop('merger', None) or AudioMerger(
            output_sample_rate=capture_options.get('sample_rate', 16000)
        )
        return cls(merger=merger, capture=AudioCapture(), **kwargs)

    def _level_reporter(self, source: str):
        def report(level: AudioLevel):
            if self.on_level:
                try:
                    self.on_level(source, level)
                except Exception as e:
                    log_exception(e, f"in level callback for {source}")
        return report

    def is_running(self) -> bool:
        return self._running

    def start(self) -> bool:
        """Start the merger, the capture streams and the drain thread."""
        if self._running:
            return True

        for meter in self.meters.values():
            meter.reset()
        with self._stats_lock:
            self._chunks_received = {MICROPHONE: 0, SYSTEM: 0}
        self.merger.start()

        if self.capture is not None:
            if not self.capture.start():
                self.merger.clear()
                self.merger.stop()
                ConfigManager.console_print("[Session] Capture failed to start")
                return False

            self._running = True
            self._drain_thread = threading.Thread(target=self._drain_loop, daemon=True)
            self._drain_thread.start()
        else:
            self._running = True

        ConfigManager.console_print("[Session] Recording started")
        return True

    def stop(self) -> Optional[MergedAudioResult]:
        """Stop capture, flush queued audio into the merger and write the recording."""
        if not self._running:
            return None

        self._running = False
        if self.capture is not None:
            self.capture.stop()

        self._join_drain_thread()

        # Chunks queued between the last poll and capture.stop()
        if self.capture is not None:
            self._drain_once(timeout=0)

        log_debug(f"SESSION STOP: chunks={self.chunks_received()}, stats={self.merger.get_buffer_stats()}")
        result = self.merger.stop()
        ConfigManager.console_print("[Session] Recording stopped")
        return result

    def cancel(self) -> None:
        """Abort without writing anything."""
        self._running = False
        if self.capture is not None:
            self.capture.stop()
        self._join_drain_thread()
        self.merger.clear()
        self.merger.stop()

    def push(self, source: str, samples) -> None:
        """Feed one block as if it came from the capture callback."""
        if source not in self.meters:
            raise ValueError(f"Unknown source '{source}'")
        if not self._running:
            return
        self._route(source, to_float32(samples))

    def levels(self) -> Dict[str, AudioLevel]:
        """Flush both meters (UI-rate polling)."""
        return {source: meter.flush() for source, meter in self.meters.items()}

    def get_stats(self) -> dict:
        stats = self.merger.get_buffer_stats()
        stats['chunks_received'] = self.chunks_received()
        stats['smoothed_levels'] = {source: meter.smoothed for source, meter in self.meters.items()}
        return stats

    def chunks_received(self) -> Dict[str, int]:
        with self._stats_lock:
            return dict(self._chunks_received)

    def _join_drain_thread(self) -> None:
        if not self._drain_thread:
            return
        self._drain_thread.join(timeout=self.join_timeout)
        if self._drain_thread.is_alive():
            # Still routing; chunks it hands over after merger.stop() are lost
            log_warning(f"RecordingSession: drain thread still running {self.join_timeout}s after stop")
            ConfigManager.console_print("[Session] Drain thread did not finish; late audio may be dropped")
        self._drain_thread = None

    def _route(self, source: str, samples) -> None:
        with self._stats_lock:
            self._chunks_received[source] += 1
        self.meters[source].add_frame(samples)
        if source == MICROPHONE:
            self.merger.add_microphone_chunk(samples)
        else:
            self.merger.add_system_chunk(samples)

    def _drain_once(self, timeout: float) -> None:
        for source in (MICROPHONE, SYSTEM):
            for chunk in self.capture.drain(source, timeout=timeout):
                self._route(source, chunk.samples)
            # Only the first source waits; the second just takes what is queued
            timeout = 0

    def _drain_loop(self):
        """Move captured chunks into the merger until stop()."""
        try:
            loop_count = 0
            while self._running:
                loop_count += 1
                self._drain_once(self.poll_timeout)
                if loop_count % 100 == 0:
                    log_debug(f"SESSION: loop={loop_count}, stats={self.merger.get_buffer_stats()}")
        except Exception as e:
            log_exception(e, "in session drain loop")
