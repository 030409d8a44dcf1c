"""
Microphone capture.

A sounddevice InputStream runs the real-time callback on the PortAudio
thread. The callback only copies each block into a bounded queue and
updates the input level; the consumer owns the arrays once it takes them
out of the queue. stop() drains the queue and returns the recording.

Errors:
- DeviceUnavailable: stream could not be opened
- StreamInterrupted: stream ended while still capturing (device lost);
  the samples captured so far travel with the exception
Neither is retried here.
"""

import logging
import math
import queue
import threading
from typing import Callable, Dict, List, Optional

import numpy as np

from exceptions import DeviceUnavailable, StreamInterrupted
from utils.audio_io import int16_to_float32

logger = logging.getLogger(__name__)


def _sounddevice_stream(**kwargs):
    """Open a sounddevice InputStream, mapping PortAudio failures."""
    try:
        import sounddevice as sd
    except OSError as e:
        # Raised when the PortAudio library itself is missing
        raise DeviceUnavailable(f"Audio backend unavailable: {e}") from e

    try:
        return sd.InputStream(**kwargs)
    except sd.PortAudioError as e:
        raise DeviceUnavailable(f"Could not open input device: {e}") from e


class AudioCapture:
    """
    Callback-driven microphone recorder.

    Usage:
        capture = AudioCapture(config, on_level=meter.update)
        capture.start()
        ...
        audio = capture.stop()
    """

    def __init__(
        self,
        config: Optional[Dict] = None,
        stream_factory: Optional[Callable] = None,
        on_level: Optional[Callable[[float], None]] = None
    ):
        config = config or {}
        capture_config = config.get('audio', {}).get('capture', {})

        self.sample_rate = capture_config.get('sample_rate', config.get('audio', {}).get('sample_rate', 16000))
        self.block_size = capture_config.get('block_size', 4096)
        self.device = capture_config.get('device')
        self.max_duration_sec = capture_config.get('max_duration_sec', 300.0)
        self.level_gain = capture_config.get('level_gain', 4.0)

        self.stream_factory = stream_factory or _sounddevice_stream
        self.on_level = on_level

        max_blocks = int(math.ceil(self.max_duration_sec * self.sample_rate / self.block_size)) + 8
        self._queue: queue.Queue = queue.Queue(maxsize=max_blocks)
        self._max_samples = int(self.max_duration_sec * self.sample_rate)

        self._lock = threading.Lock()
        self._stream = None
        self._captured_samples = 0
        self._stopping = False
        self._interrupted = False
        self._done = threading.Event()
        self._recording: Optional[np.ndarray] = None
        self._error: Optional[StreamInterrupted] = None

        self.level = 0.0
        self.dropped_blocks = 0

    @property
    def is_recording(self) -> bool:
        return self._stream is not None

    def start(self) -> None:
        """
        Open the input stream and begin capturing.

        Raises:
            DeviceUnavailable: If the stream cannot be opened or started
        """
        with self._lock:
            if self._stream is not None:
                logger.warning("Capture already running")
                return

            self._reset()
            try:
                stream = self.stream_factory(
                    samplerate=self.sample_rate,
                    channels=1,
                    dtype='float32',
                    blocksize=self.block_size,
                    device=self.device,
                    callback=self._callback,
                    finished_callback=self._finished
                )
                stream.start()
            except DeviceUnavailable:
                raise
            except (OSError, RuntimeError) as e:
                raise DeviceUnavailable(f"Could not start input stream: {e}") from e

            self._stream = stream

        logger.info(f"Capture started ({self.sample_rate}Hz, block={self.block_size})")

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the duration limit is hit or the stream ends."""
        return self._done.wait(timeout)

    def stop(self) -> np.ndarray:
        """
        Stop capturing and return the recording.

        Idempotent: later calls return the same recording (or re-raise the
        same StreamInterrupted) without touching the device.

        Raises:
            StreamInterrupted: If the device went away during capture
        """
        with self._lock:
            if self._stream is None:
                if self._error is not None:
                    raise self._error
                if self._recording is not None:
                    return self._recording
                return np.zeros(0, dtype=np.float32)

            self._stopping = True
            stream, self._stream = self._stream, None
            try:
                stream.stop()
                stream.close()
            except (OSError, RuntimeError) as e:
                logger.warning(f"Error closing input stream: {e}")

            audio = self._drain()
            self._recording = audio
            self._done.set()

            logger.info(
                f"Capture stopped: {len(audio)/self.sample_rate:.2f}s recorded"
                + (f", {self.dropped_blocks} blocks dropped" if self.dropped_blocks else "")
            )

            if self._interrupted:
                self._error = StreamInterrupted(
                    "Input stream ended unexpectedly (device disconnected?)",
                    partial_audio=audio
                )
                logger.error(str(self._error))
                raise self._error

            return audio

    def record(self, duration_sec: float) -> np.ndarray:
        """Blocking helper: capture for duration_sec (or until interrupted)."""
        self.start()
        self.wait(min(duration_sec, self.max_duration_sec))
        return self.stop()

    def _reset(self):
        self._queue = queue.Queue(maxsize=self._queue.maxsize)
        self._captured_samples = 0
        self._stopping = False
        self._interrupted = False
        self._done.clear()
        self._recording = None
        self._error = None
        self.level = 0.0
        self.dropped_blocks = 0

    def _callback(self, indata, frames, time_info, status):
        """PortAudio thread: copy the block and hand it off."""
        if status:
            logger.debug(f"Input stream status: {status}")

        if self._captured_samples >= self._max_samples:
            return

        if getattr(indata, 'dtype', None) == np.int16:
            block = int16_to_float32(indata)
        else:
            block = np.array(indata, dtype=np.float32, copy=True)
        if block.ndim > 1:
            block = block[:, 0]

        remaining = self._max_samples - self._captured_samples
        if len(block) > remaining:
            block = block[:remaining]

        rms = float(np.sqrt(np.mean(block ** 2))) if len(block) else 0.0
        self.level = min(1.0, rms * self.level_gain)
        if self.on_level is not None:
            self.on_level(self.level)

        try:
            self._queue.put_nowait(block)
        except queue.Full:
            self.dropped_blocks += 1
            return

        self._captured_samples += len(block)
        if self._captured_samples >= self._max_samples:
            logger.info(f"Maximum capture duration reached ({self.max_duration_sec:.0f}s)")
            self._done.set()

    def _finished(self):
        """Stream ended; unexpected unless stop() initiated it."""
        if not self._stopping:
            self._interrupted = True
            self._done.set()

    def _drain(self) -> np.ndarray:
        blocks: List[np.ndarray] = []
        while True:
            try:
                blocks.append(self._queue.get_nowait())
            except queue.Empty:
                break
        if not blocks:
            return np.zeros(0, dtype=np.float32)
        return np.concatenate(blocks).astype(np.float32)
