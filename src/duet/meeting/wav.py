"""
16-bit PCM WAV container.

Merged recordings are written as a canonical 44-byte RIFF/WAVE header
followed by little-endian int16 samples, so any WAV reader can open them.
"""

import io
import struct
import wave
from dataclasses import dataclass
from pathlib import Path
from typing import Tuple, Union

import numpy as np

from ..utils import replace_with_retries

HEADER_SIZE = 44
BYTES_PER_SAMPLE = 2

# RIFF id, RIFF size, WAVE, fmt id, fmt size, format tag, channels,
# sample rate, byte rate, block align, bits per sample, data id, data size
_HEADER_STRUCT = struct.Struct('<4sI4s4sIHHIIHH4sI')


@dataclass(frozen=True)
class WavHeader:
    """Fields of a canonical PCM WAV header."""
    riff_size: int
    audio_format: int
    channels: int
    sample_rate: int
    byte_rate: int
    block_align: int
    bits_per_sample: int
    data_size: int

    @property
    def frame_count(self) -> int:
        if not self.block_align:
            return 0
        return self.data_size // self.block_align

    @property
    def duration(self) -> float:
        if not self.sample_rate:
            return 0.0
        return self.frame_count / self.sample_rate


def float_to_pcm16(samples) -> np.ndarray:
    """
    Quantize float samples for the WAV payload.

    Clamped to [-1, 1]; negative values scale by 32768 and positive values
    by 32767 so both full-scale ends map onto the int16 limits.
    """
    audio = np.clip(np.asarray(samples, dtype=np.float64), -1.0, 1.0)
    if audio.size == 0:
        return np.zeros(0, dtype=np.int16)
    scaled = np.where(audio < 0, audio * 32768.0, audio * 32767.0)
    return np.round(scaled).astype(np.int16)


def _as_pcm16(samples) -> np.ndarray:
    array = np.asarray(samples)
    if array.dtype == np.int16:
        return np.ascontiguousarray(array).ravel()
    return float_to_pcm16(array).ravel()


def encode_wav(samples, sample_rate: int, channels: int) -> bytes:
    """
    Serialize samples into WAV bytes.

    Args:
        samples: int16 PCM (written as-is) or floats in [-1, 1] (quantized)
        sample_rate: Frames per second written to the header
        channels: Channel count; multi-channel input must be interleaved

    Returns:
        Complete file contents: 44-byte header + little-endian int16 data
    """
    pcm = _as_pcm16(samples)
    buffer = io.BytesIO()
    with wave.open(buffer, 'wb') as wf:
        wf.setnchannels(channels)
        wf.setsampwidth(BYTES_PER_SAMPLE)  # 16-bit
        wf.setframerate(sample_rate)
        # wave converts native-order frames to little-endian on big-endian hosts
        wf.writeframes(pcm.astype(np.int16, copy=False).tobytes())
    return buffer.getvalue()


def write_wav(
    file_path: Union[str, Path],
    samples,
    sample_rate: int,
    channels: int
) -> Path:
    """
    Write a WAV file atomically (temp file, then rename).

    Raises OSError / RuntimeError when the file cannot be written.
    """
    file_path = Path(file_path)
    file_path.parent.mkdir(parents=True, exist_ok=True)
    data = encode_wav(samples, sample_rate, channels)

    temp_path = file_path.with_suffix('.tmp')
    try:
        temp_path.write_bytes(data)
    except OSError:
        if temp_path.exists():
            temp_path.unlink()
        raise
    replace_with_retries(temp_path, file_path)
    return file_path


def read_wav_header(data: bytes) -> WavHeader:
    """Parse the canonical 44-byte header. Raises ValueError on anything else."""
    if len(data) < HEADER_SIZE:
        raise ValueError(f"WAV data too short for header: {len(data)} bytes")

    (riff, riff_size, wave_id, fmt_id, fmt_size, audio_format, channels,
     sample_rate, byte_rate, block_align, bits, data_id, data_size) = _HEADER_STRUCT.unpack_from(data, 0)

    if riff != b'RIFF' or wave_id != b'WAVE' or fmt_id != b'fmt ' or data_id != b'data':
        raise ValueError("Not a canonical PCM WAV header")
    if fmt_size != 16:
        raise ValueError(f"Unexpected fmt chunk size {fmt_size}")

    return WavHeader(
        riff_size=riff_size,
        audio_format=audio_format,
        channels=channels,
        sample_rate=sample_rate,
        byte_rate=byte_rate,
        block_align=block_align,
        bits_per_sample=bits,
        data_size=data_size,
    )


def read_wav(file_path: Union[str, Path]) -> Tuple[np.ndarray, WavHeader]:
    """Load a WAV written by write_wav: interleaved int16 samples plus header."""
    data = Path(file_path).read_bytes()
    header = read_wav_header(data)
    payload = data[HEADER_SIZE:HEADER_SIZE + header.data_size]
    samples = np.frombuffer(payload, dtype='<i2').astype(np.int16)
    return samples, header
