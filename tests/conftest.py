"""
Pytest fixtures for duet tests.
"""

import os
import sys
import tempfile
from pathlib import Path

import numpy as np
import pytest

# Keep test logs out of the working tree
os.environ.setdefault("DUET_LOG_DIR", tempfile.mkdtemp(prefix="duet-logs-"))

# Add src directory to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from duet.meeting.speakers import TranscriptSegment  # noqa: E402
from duet.utils import ConfigManager  # noqa: E402


@pytest.fixture(autouse=True)
def isolated_config(tmp_path):
    """Fresh ConfigManager per test with schema defaults and quiet output."""
    ConfigManager.reset()
    ConfigManager.initialize(config_path=str(tmp_path / "missing_config.yaml"))
    ConfigManager.set_config_value(False, "misc", "print_to_terminal")
    ConfigManager.set_config_value(str(tmp_path / "recordings"), "merge_options", "recordings_folder")
    yield ConfigManager
    ConfigManager.reset()


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def sine_block():
    """Factory for float32 sine blocks."""
    def make(frames=1024, amplitude=0.5, freq=440.0, sample_rate=16000):
        t = np.arange(frames) / sample_rate
        return (amplitude * np.sin(2 * np.pi * freq * t)).astype(np.float32)
    return make


def _two_party(label_a, label_b, long_total, short_total, count_a=10, count_b=2, offset=0.0, text_prefix=""):
    """Segments for two speakers whose total durations are long_total / short_total seconds."""
    segments = []
    t = offset
    for i in range(count_a):
        length = long_total / count_a
        segments.append(TranscriptSegment(
            speaker=label_a,
            text=f"{text_prefix}{label_a} talking about topic number {i}",
            start_time=t,
            end_time=t + length,
            confidence=0.9,
        ))
        t += length + 60.0
    for i in range(count_b):
        length = short_total / count_b
        segments.append(TranscriptSegment(
            speaker=label_b,
            text=f"{text_prefix}{label_b} short reply {i}",
            start_time=t,
            end_time=t + length,
            confidence=0.8,
        ))
        t += length + 60.0
    return segments


@pytest.fixture
def two_party_segments():
    """
    Mic: A=30s, B=5s. System: X=28s, Y=4s.
    Stream times are spaced far apart so nothing overlaps or echoes.
    """
    mic = _two_party("Speaker A", "Speaker B", 30.0, 5.0)
    system = _two_party("Speaker X", "Speaker Y", 28.0, 4.0, offset=10_000.0)
    return mic, system


@pytest.fixture
def sample_segments_json():
    """Sample segment payload as produced by a transcription service."""
    return {
        "segments": [
            {"speaker": "A", "text": "Thanks for joining today", "start_time": 0.0, "end_time": 2.5, "confidence": 0.92},
            {"speaker": "A", "text": "Tell me about your last project", "start_time": 3.0, "end_time": 6.0, "confidence": 0.9},
            {"speaker": None, "text": "hmm", "startTime": 6.5, "endTime": 7.0, "confidence": None},
        ]
    }
