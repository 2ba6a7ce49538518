"""
Audio capture for meeting recording.
Uses sounddevice input streams for the microphone and a loopback device
(BlackHole on macOS, a PulseAudio monitor on Linux, Stereo Mix / virtual
cable on Windows).

The stream callbacks run on the audio thread: they copy the block, wrap it
in an AudioChunk and put_nowait() it on a per-source queue. Nothing in a
callback blocks or touches the disk.
"""

import queue
import time
from dataclasses import dataclass
from typing import List, Optional

import numpy as np

from ..logger import log_debug, log_error, log_exception
from ..utils import ConfigManager

MICROPHONE = "microphone"
SYSTEM = "system"

# Substrings that identify common loopback / virtual capture devices
LOOPBACK_DEVICE_HINTS = ("BlackHole", "Loopback", "Monitor", "Stereo Mix", "CABLE Output")


@dataclass
class AudioChunk:
    """One captured block from a single source."""
    source: str              # "microphone" or "system"
    samples: np.ndarray      # float32 mono, [-1, 1]
    timestamp: float         # time.monotonic() when the block arrived


def _import_sounddevice():
    # PortAudio is loaded on import; keep it off the import path of the pipeline
    import sounddevice as sd
    return sd


def block_to_mono(indata: np.ndarray) -> np.ndarray:
    """Copy a (frames, channels) callback block into a float32 mono array."""
    block = np.asarray(indata, dtype=np.float32)
    if block.ndim == 1:
        return block.copy()
    if block.shape[1] == 1:
        return block[:, 0].copy()
    # Use first 2 channels (left/right) for stereo content
    return block[:, :2].mean(axis=1).astype(np.float32)


class AudioCapture:
    """Captures audio from microphone and system loopback simultaneously."""

    def __init__(
        self,
        sample_rate: Optional[int] = None,
        chunk_size: Optional[int] = None,
        mic_device=None,
        loopback_device=None,
        queue_size: Optional[int] = None
    ):
        options = ConfigManager.get_config_section('capture_options')
        self.sample_rate = sample_rate or options.get('sample_rate', 16000)
        self.chunk_size = chunk_size or options.get('chunk_size', 1024)
        self._mic_device_hint = mic_device if mic_device is not None else options.get('microphone_device')
        self._loopback_device_hint = (
            loopback_device if loopback_device is not None else options.get('loopback_device')
        )
        if queue_size is None:
            queue_size = options.get('queue_size', 0) or 0

        self._recording = False
        self._mic_stream = None
        self._loopback_stream = None

        # Queues for audio data
        self.mic_queue: queue.Queue = queue.Queue(maxsize=queue_size)
        self.loopback_queue: queue.Queue = queue.Queue(maxsize=queue_size)
        self.overruns = {MICROPHONE: 0, SYSTEM: 0}
        # PortAudio status flags (input overflow etc.), logged on stop()
        self.status_events = {MICROPHONE: 0, SYSTEM: 0}
        self.last_status = {MICROPHONE: None, SYSTEM: None}

        # Track actual loopback format
        self.loopback_sample_rate: int = self.sample_rate
        self.loopback_channels: int = 1

        self.mic_device: Optional[dict] = None
        self.loopback_device: Optional[dict] = None

    # --- Device discovery ---

    @staticmethod
    def list_devices() -> List[dict]:
        """All input-capable devices as dicts with their index."""
        sd = _import_sounddevice()
        devices = []
        for i, dev in enumerate(sd.query_devices()):
            if dev['max_input_channels'] > 0:
                dev_copy = dict(dev)
                dev_copy['index'] = i
                devices.append(dev_copy)
        return devices

    def _find_default_mic(self) -> Optional[dict]:
        """Find the configured or default microphone device."""
        sd = _import_sounddevice()
        try:
            if self._mic_device_hint is not None:
                return self._find_device(self._mic_device_hint)
            default_input = dict(sd.query_devices(kind='input'))
            default_input['index'] = sd.default.device[0]
            ConfigManager.console_print(f"[Capture] Default mic: {default_input['name']}")
            return default_input
        except Exception as e:
            log_error("Error finding microphone", e)
            ConfigManager.console_print(f"[Capture] Error finding default mic: {e}")
            return None

    def _find_loopback_device(self) -> Optional[dict]:
        """Find the configured loopback device or the first known virtual device."""
        try:
            if self._loopback_device_hint is not None:
                return self._find_device(self._loopback_device_hint)

            for dev in self.list_devices():
                if any(hint.lower() in dev['name'].lower() for hint in LOOPBACK_DEVICE_HINTS):
                    ConfigManager.console_print(f"[Capture] Found loopback: {dev['name']}")
                    ConfigManager.console_print(
                        f"[Capture]   Rate: {dev['default_samplerate']}Hz, Channels: {dev['max_input_channels']}"
                    )
                    return dev

            ConfigManager.console_print("[Capture] No loopback device found; recording microphone only")
            ConfigManager.console_print("[Capture] macOS: brew install blackhole-2ch, then set capture_options.loopback_device")
            return None
        except Exception as e:
            log_error("Error finding loopback device", e)
            ConfigManager.console_print(f"[Capture] Error finding loopback device: {e}")
            return None

    def _find_device(self, hint) -> Optional[dict]:
        """Resolve a device index or (partial, case-insensitive) name."""
        for dev in self.list_devices():
            if isinstance(hint, int) and dev['index'] == hint:
                return dev
            if isinstance(hint, str) and hint.lower() in dev['name'].lower():
                return dev
        ConfigManager.console_print(f"[Capture] Device not found: {hint}")
        return None

    # --- Callbacks (audio thread) ---

    def _mic_callback(self, indata, frames, time_info, status):
        """Callback for microphone audio."""
        if status:
            self._note_status(MICROPHONE, status)
        if self._recording:
            self._enqueue(self.mic_queue, MICROPHONE, block_to_mono(indata))

    def _loopback_callback(self, indata, frames, time_info, status):
        """Callback for loopback audio."""
        if status:
            self._note_status(SYSTEM, status)
        if self._recording:
            self._enqueue(self.loopback_queue, SYSTEM, block_to_mono(indata))

    def _note_status(self, source: str, status):
        self.status_events[source] += 1
        self.last_status[source] = str(status)

    def _enqueue(self, target: queue.Queue, source: str, samples: np.ndarray):
        try:
            target.put_nowait(AudioChunk(source=source, samples=samples, timestamp=time.monotonic()))
        except queue.Full:
            self.overruns[source] += 1

    # --- Control ---

    def start(self) -> bool:
        """Start capturing audio from both sources."""
        if self._recording:
            return True

        try:
            sd = _import_sounddevice()
            self.mic_device = self._find_default_mic()
            self.loopback_device = self._find_loopback_device()

            if not self.mic_device and not self.loopback_device:
                ConfigManager.console_print("[Capture] No input devices available")
                return False

            # Set recording flag FIRST so callbacks capture audio
            self._recording = True

            if self.mic_device:
                self._mic_stream = sd.InputStream(
                    device=self.mic_device['index'],
                    samplerate=self.sample_rate,
                    channels=1,
                    dtype='float32',
                    blocksize=self.chunk_size,
                    callback=self._mic_callback
                )
                self._mic_stream.start()
                ConfigManager.console_print("[Capture] Microphone stream started")

            if self.loopback_device:
                self.loopback_channels = min(2, int(self.loopback_device['max_input_channels']))
                self._loopback_stream = sd.InputStream(
                    device=self.loopback_device['index'],
                    samplerate=self.sample_rate,
                    channels=self.loopback_channels,
                    dtype='float32',
                    blocksize=self.chunk_size,
                    callback=self._loopback_callback
                )
                self._loopback_stream.start()
                ConfigManager.console_print(
                    f"[Capture] Loopback stream started ({self.sample_rate}Hz, {self.loopback_channels}ch)"
                )

            return True

        except Exception as e:
            log_exception(e, "starting capture")
            ConfigManager.console_print(f"[Capture] Error starting capture: {e}")
            self.stop()
            return False

    def stop(self):
        """Stop capturing audio. Queued chunks stay available to drain()."""
        self._recording = False

        for name in ('_mic_stream', '_loopback_stream'):
            stream = getattr(self, name)
            if stream is None:
                continue
            try:
                stream.stop()
                stream.close()
            except Exception as e:
                log_error(f"Error closing {name}", e)
            setattr(self, name, None)

        if any(self.overruns.values()):
            log_error(f"Capture queue overruns: {self.overruns}")
        if any(self.status_events.values()):
            log_debug(f"Capture status events: {self.status_events}, last: {self.last_status}")
        ConfigManager.console_print("[Capture] Capture stopped")

    def drain(self, source: str, timeout: float = 0.1) -> List[AudioChunk]:
        """
        Get queued chunks for one source.

        Waits up to `timeout` for the first chunk, then takes everything
        else that is already queued without blocking.
        """
        target = self.mic_queue if source == MICROPHONE else self.loopback_queue
        chunks = []
        try:
            chunks.append(target.get(timeout=timeout) if timeout else target.get_nowait())
        except queue.Empty:
            return chunks

        while True:
            try:
                chunks.append(target.get_nowait())
            except queue.Empty:
                break
        return chunks

    def is_recording(self) -> bool:
        """Check if currently recording."""
        return self._recording
