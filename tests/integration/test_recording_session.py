"""
Integration tests for a full recording: capture -> session -> merger -> WAV.

Capture is replaced by an in-memory fake with the same start/stop/drain
surface, so no audio hardware is needed.
"""

import queue
import threading
import time

import numpy as np
import pytest

from duet.meeting.capture import MICROPHONE, SYSTEM, AudioChunk
from duet.meeting.merger import AudioMerger, MergeOptions
from duet.meeting.session import RecordingSession
from duet.meeting.wav import read_wav


class FakeCapture:
    """Queue-backed stand-in for AudioCapture."""

    def __init__(self, start_ok=True):
        self.start_ok = start_ok
        self.started = False
        self.stopped = False
        self.queues = {MICROPHONE: queue.Queue(), SYSTEM: queue.Queue()}

    def feed(self, source, samples):
        self.queues[source].put(AudioChunk(source=source, samples=samples, timestamp=time.monotonic()))

    def start(self):
        self.started = self.start_ok
        return self.start_ok

    def stop(self):
        self.stopped = True

    def drain(self, source, timeout=0.1):
        chunks = []
        try:
            chunks.append(self.queues[source].get(timeout=timeout) if timeout else self.queues[source].get_nowait())
        except queue.Empty:
            return chunks
        while True:
            try:
                chunks.append(self.queues[source].get_nowait())
            except queue.Empty:
                return chunks


class StallingCapture(FakeCapture):
    """Capture whose first drain() blocks until released."""

    def __init__(self, release):
        super().__init__()
        self.release = release
        self.stalled = threading.Event()
        self._blocked_once = False

    def drain(self, source, timeout=0.1):
        if not self._blocked_once:
            self._blocked_once = True
            self.stalled.set()
            self.release.wait(timeout=5.0)
        return super().drain(source, timeout=timeout)


@pytest.fixture
def merger(temp_dir):
    return AudioMerger(MergeOptions(), output_dir=temp_dir)


class TestRecordingSession:
    """End-to-end recording through the drain thread."""

    def test_all_queued_audio_reaches_the_file(self, merger, sine_block):
        """Chunks still queued at stop() are drained before the WAV is written."""
        capture = FakeCapture()
        session = RecordingSession(merger=merger, capture=capture, poll_timeout=0.01)
        assert session.start()
        assert capture.started

        for _ in range(10):
            capture.feed(MICROPHONE, sine_block(160))
            capture.feed(SYSTEM, sine_block(160, amplitude=0.25))

        result = session.stop()

        assert capture.stopped
        assert result is not None
        samples, header = read_wav(result.file_path)
        assert header.channels == 2
        assert header.frame_count == 1600
        assert session.get_stats()["chunks_received"] == {MICROPHONE: 10, SYSTEM: 10}
        # Right channel carries system audio at 0.8 gain
        right = samples[1::2].astype(np.float64) / 32768
        assert np.max(np.abs(right)) == pytest.approx(0.25 * 0.8, abs=0.01)

    def test_level_reports(self, merger, sine_block):
        reports = []
        capture = FakeCapture()
        session = RecordingSession(
            merger=merger,
            capture=capture,
            on_level=lambda source, level: reports.append((source, level)),
            report_interval=2,
            poll_timeout=0.01
        )
        session.start()
        for _ in range(4):
            capture.feed(MICROPHONE, sine_block(256, amplitude=0.5))
        capture.feed(SYSTEM, sine_block(256, amplitude=0.5))
        session.stop()

        mic_reports = [level for source, level in reports if source == MICROPHONE]
        assert len(mic_reports) == 2
        assert mic_reports[0].rms == pytest.approx(50 / np.sqrt(2), rel=0.05)
        # One system frame is below the report interval but still flushes on demand
        assert session.levels()[SYSTEM].rms > 0

    def test_level_callback_errors_do_not_stop_recording(self, merger, sine_block):
        def broken(source, level):
            raise RuntimeError("ui gone")

        session = RecordingSession(merger=merger, on_level=broken, report_interval=1)
        session.start()
        session.push(MICROPHONE, sine_block(160))
        assert session.stop() is not None

    def test_capture_failure(self, merger):
        session = RecordingSession(merger=merger, capture=FakeCapture(start_ok=False))
        assert not session.start()
        assert not session.is_running()
        assert not merger.is_recording

    def test_cancel_writes_nothing(self, merger, temp_dir, sine_block):
        session = RecordingSession(merger=merger)
        session.start()
        session.push(MICROPHONE, sine_block(160))
        session.cancel()
        assert not merger.is_recording
        assert list(temp_dir.iterdir()) == []

    def test_stuck_drain_thread_is_reported(self, merger, monkeypatch):
        """stop() warns when the drain thread outlives the join timeout."""
        from duet.meeting import session as session_module

        warnings = []
        monkeypatch.setattr(session_module, "log_warning", warnings.append)

        release = threading.Event()
        capture = StallingCapture(release)
        session = RecordingSession(merger=merger, capture=capture, poll_timeout=0.01)
        session.join_timeout = 0.05
        session.start()
        assert capture.stalled.wait(timeout=2.0)

        try:
            session.stop()
        finally:
            release.set()

        assert len(warnings) == 1
        assert "drain thread" in warnings[0]

    def test_chunk_counts_from_concurrent_pushes(self, merger):
        session = RecordingSession(merger=merger, report_interval=1000)
        session.start()

        def produce(source):
            for _ in range(500):
                session.push(source, np.zeros(4, dtype=np.float32))

        threads = [threading.Thread(target=produce, args=(source,)) for source in (MICROPHONE, SYSTEM, MICROPHONE)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert session.chunks_received() == {MICROPHONE: 1000, SYSTEM: 500}
        session.cancel()

    def test_stop_when_not_running(self, merger):
        assert RecordingSession(merger=merger).stop() is None


class TestPushMode:
    """Sessions fed directly instead of through a capture object."""

    def test_push_and_stop_mono(self, temp_dir, sine_block):
        merger = AudioMerger(MergeOptions(output_channels=1, output_sample_rate=48000), output_dir=temp_dir)
        session = RecordingSession(merger=merger)
        session.start()
        session.push(MICROPHONE, sine_block(480, sample_rate=48000))
        session.push(SYSTEM, np.zeros(960, dtype=np.int16))
        result = session.stop()

        _, header = read_wav(result.file_path)
        assert result.sample_rate == 48000
        assert header.channels == 1
        assert header.frame_count == 960

    def test_push_ignored_when_stopped(self, merger, sine_block):
        session = RecordingSession(merger=merger)
        session.push(MICROPHONE, sine_block(160))
        assert merger.get_buffer_stats()["microphone_samples"] == 0

    def test_push_unknown_source(self, merger):
        session = RecordingSession(merger=merger)
        with pytest.raises(ValueError):
            session.push("speaker", np.zeros(10))
