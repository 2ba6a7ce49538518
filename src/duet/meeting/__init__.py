"""
Meeting audio pipeline

Captures microphone + system loopback, merges them into one WAV and maps
per-stream speaker labels onto meeting roles.
"""

_EXPORTS = {
    "AudioCapture": ".capture",
    "AudioChunk": ".capture",
    "AudioMerger": ".merger",
    "MergeOptions": ".merger",
    "MergedAudioResult": ".merger",
    "LevelMeter": ".levels",
    "AudioLevel": ".levels",
    "SpeakerMapper": ".speakers",
    "SpeakerMappingResult": ".speakers",
    "TranscriptSegment": ".speakers",
    "RecordingSession": ".session",
    "TranscriptWriter": ".transcript",
}


# Lazy imports so the numeric helpers load without touching audio devices
def __getattr__(name):
    if name in _EXPORTS:
        import importlib
        module = importlib.import_module(_EXPORTS[name], __name__)
        return getattr(module, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = list(_EXPORTS)
