"""
Tests for the WAV container.
"""

import struct

import numpy as np
import pytest

from duet.meeting.wav import (
    HEADER_SIZE,
    encode_wav,
    float_to_pcm16,
    read_wav,
    read_wav_header,
    write_wav,
)


class TestFloatToPcm16:
    """Tests for WAV payload quantization."""

    def test_full_scale_is_asymmetric(self):
        """-1 reaches -32768 while +1 stops at 32767."""
        assert float_to_pcm16([-1.0, 1.0, 0.0]).tolist() == [-32768, 32767, 0]

    def test_clamps(self):
        assert float_to_pcm16([3.0, -3.0]).tolist() == [32767, -32768]

    def test_half_scale(self):
        assert float_to_pcm16([-0.5]).tolist() == [-16384]


class TestEncodeWav:
    """Tests for header layout and payload."""

    def test_header_fields_stereo(self):
        """Every header field of a 16 kHz stereo file."""
        samples = np.zeros(200, dtype=np.float32)  # 100 stereo frames
        data = encode_wav(samples, sample_rate=16000, channels=2)

        assert len(data) == HEADER_SIZE + 400
        assert data[0:4] == b'RIFF'
        assert struct.unpack_from('<I', data, 4)[0] == len(data) - 8
        assert data[8:12] == b'WAVE'
        assert data[12:16] == b'fmt '
        assert struct.unpack_from('<I', data, 16)[0] == 16

        header = read_wav_header(data)
        assert header.audio_format == 1
        assert header.channels == 2
        assert header.sample_rate == 16000
        assert header.byte_rate == 16000 * 2 * 2
        assert header.block_align == 4
        assert header.bits_per_sample == 16
        assert data[36:40] == b'data'
        assert header.data_size == 400

    def test_mono_header(self):
        header = read_wav_header(encode_wav(np.zeros(16000), 16000, 1))
        assert header.channels == 1
        assert header.block_align == 2
        assert header.byte_rate == 32000
        assert header.duration == pytest.approx(1.0)

    def test_payload_little_endian(self):
        """Samples follow the header as little-endian int16."""
        data = encode_wav(np.array([1, -2, 300], dtype=np.int16), 8000, 1)
        assert struct.unpack_from('<3h', data, HEADER_SIZE) == (1, -2, 300)

    def test_int16_written_as_is(self):
        pcm = np.array([-32768, 0, 32767], dtype=np.int16)
        data = encode_wav(pcm, 8000, 1)
        payload = np.frombuffer(data[HEADER_SIZE:], dtype='<i2')
        assert payload.tolist() == [-32768, 0, 32767]

    def test_empty(self):
        """An empty payload still gets a full header."""
        data = encode_wav(np.zeros(0, dtype=np.float32), 16000, 2)
        assert len(data) == HEADER_SIZE
        assert read_wav_header(data).data_size == 0


class TestReadWavHeader:
    """Tests for header validation."""

    def test_too_short(self):
        with pytest.raises(ValueError):
            read_wav_header(b'RIFF')

    def test_not_wav(self):
        with pytest.raises(ValueError):
            read_wav_header(b'X' * HEADER_SIZE)


class TestWriteWav:
    """Tests for writing to disk."""

    def test_write_and_read(self, temp_dir):
        """A written file reads back with the same quantized samples."""
        samples = np.array([0.0, 0.25, -0.25, 1.0, -1.0, 0.5], dtype=np.float32)
        path = write_wav(temp_dir / "out.wav", samples, 16000, 2)

        loaded, header = read_wav(path)
        assert header.channels == 2
        assert header.frame_count == 3
        assert loaded.tolist() == float_to_pcm16(samples).tolist()

    def test_creates_parent_and_leaves_no_temp(self, temp_dir):
        target = temp_dir / "nested" / "deeper" / "out.wav"
        write_wav(target, np.zeros(10), 16000, 1)
        assert target.exists()
        assert not target.with_suffix('.tmp').exists()

    def test_overwrites_existing(self, temp_dir):
        target = temp_dir / "out.wav"
        write_wav(target, np.zeros(10), 16000, 1)
        write_wav(target, np.zeros(20), 16000, 1)
        _, header = read_wav(target)
        assert header.frame_count == 20

    def test_unwritable_target_raises(self, temp_dir):
        """A parent path that is a file cannot hold the WAV."""
        blocker = temp_dir / "blocker"
        blocker.write_text("not a directory")
        with pytest.raises(OSError):
            write_wav(blocker / "out.wav", np.zeros(10), 16000, 1)
