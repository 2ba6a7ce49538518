"""
Sample conversion helpers for the capture pipeline.

Pure numpy transforms: float <-> int16, stereo -> mono, naive decimation.
"""

import numpy as np


def to_float32(samples) -> np.ndarray:
    """
    Return a float32 copy of a capture block.

    int16 PCM is scaled into [-1, 1); float input is copied as-is so the
    caller's buffer is never retained.
    """
    if samples is None:
        return np.zeros(0, dtype=np.float32)
    array = np.asarray(samples)
    if array.dtype == np.int16:
        return array.astype(np.float32).ravel() / 32768.0
    return np.array(array, dtype=np.float32, copy=True).ravel()


def float_to_int16(samples) -> np.ndarray:
    """Clamp to [-1, 1], scale by 32767 and round to the nearest integer."""
    audio = np.asarray(samples, dtype=np.float32)
    if audio.size == 0:
        return np.zeros(0, dtype=np.int16)
    clipped = np.clip(audio, -1.0, 1.0).astype(np.float64)
    return np.round(clipped * 32767).astype(np.int16)


def downmix_stereo_to_mono(interleaved) -> np.ndarray:
    """
    Average interleaved L/R pairs into one mono channel.

    Precondition: even input length. An odd trailing sample has no partner
    and is dropped.
    """
    audio = np.asarray(interleaved, dtype=np.float32)
    frames = audio.size // 2
    if frames == 0:
        return np.zeros(0, dtype=np.float32)
    pairs = audio[:frames * 2].reshape(-1, 2)
    return ((pairs[:, 0] + pairs[:, 1]) / 2).astype(np.float32)


def downsample(samples, factor: int) -> np.ndarray:
    """
    Keep every `factor`-th sample (no anti-alias filter).

    Output length is floor(len / factor).
    """
    if factor < 1:
        raise ValueError(f"Downsample factor must be >= 1, got {factor}")
    audio = np.asarray(samples, dtype=np.float32)
    length = audio.size // factor
    return audio[:length * factor:factor].copy()


def prepare_for_transcription(
    samples,
    channels: int,
    source_rate: int,
    target_rate: int = 16000
) -> np.ndarray:
    """
    Turn a raw capture block into the int16 mono feed a transcriber expects.

    Args:
        samples: Interleaved float samples
        channels: Channel count of `samples` (only the first two are used)
        source_rate: Capture sample rate (e.g., 48000)
        target_rate: Rate expected downstream (16000 for most ASR services)

    Returns:
        int16 mono PCM. Decimation is applied only when source_rate is an
        integer multiple of target_rate; otherwise the rate is left unchanged.
    """
    audio = np.asarray(samples, dtype=np.float32).ravel()

    if channels == 2:
        audio = downmix_stereo_to_mono(audio)
    elif channels > 2:
        frames = audio.size // channels
        audio = audio[:frames * channels].reshape(-1, channels)[:, :2].mean(axis=1)

    if source_rate > target_rate and source_rate % target_rate == 0:
        audio = downsample(audio, source_rate // target_rate)

    return float_to_int16(audio)
