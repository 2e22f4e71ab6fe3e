from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable

import numpy as np

from .audio import FloatArray
from .errors import CaptureError
from .session import FrameOutput, Session

_LOGGER = logging.getLogger("tonalpull.capture")


def _load_sounddevice() -> Any | None:
    try:
        import sounddevice as sd_module  # type: ignore[import]
    except (ImportError, OSError) as exc:
        # OSError: the wheel imports but PortAudio itself is missing.
        _LOGGER.info("sounddevice not available: %s", exc, exc_info=True)
        return None
    return sd_module


def capture_available() -> bool:
    return _load_sounddevice() is not None


class MicrophoneCapture:
    """Keeps the most recent ``frame_size`` input samples from the default device."""

    def __init__(self, *, sample_rate: int = 44_100, frame_size: int = 2048) -> None:
        self.sample_rate = sample_rate
        self.frame_size = frame_size
        self._stream: Any | None = None
        self._buffer: FloatArray | None = None
        self._filled = 0
        self._lock = threading.Lock()

    @property
    def ready(self) -> bool:
        return self._stream is not None

    def _on_audio(self, indata: Any, frames: int, time_info: Any, status: Any) -> None:
        _ = (frames, time_info)
        if status:
            _LOGGER.debug("Input stream status: %s", status)
        samples = np.asarray(indata, dtype=np.float32).reshape(-1)
        if samples.size == 0:
            return
        with self._lock:
            buffer = self._buffer
            if buffer is None:
                return
            if samples.size >= buffer.size:
                buffer[:] = samples[-buffer.size :]
            else:
                buffer[: -samples.size] = buffer[samples.size :]
                buffer[-samples.size :] = samples
            self._filled = min(buffer.size, self._filled + samples.size)

    def start(self) -> bool:
        """Open the input stream; returns False when no device can be used."""
        if self.ready:
            return True
        sd = _load_sounddevice()
        if sd is None:
            return False
        with self._lock:
            self._buffer = np.zeros(self.frame_size, dtype=np.float32)
            self._filled = 0
        try:
            stream = sd.InputStream(
                samplerate=self.sample_rate,
                channels=1,
                dtype="float32",
                callback=self._on_audio,
            )
            stream.start()
        except Exception as exc:
            _LOGGER.warning("Microphone capture failed to start: %s", exc, exc_info=True)
            with self._lock:
                self._buffer = None
            return False
        self._stream = stream
        _LOGGER.info("Microphone capture started (%d Hz)", self.sample_rate)
        return True

    def read_frame(self) -> FloatArray | None:
        with self._lock:
            if self._buffer is None or self._filled < self.frame_size:
                return None
            return self._buffer.copy()

    def stop(self) -> None:
        stream = self._stream
        self._stream = None
        if stream is not None:
            try:
                stream.stop()
                stream.close()
            except Exception as exc:
                _LOGGER.warning("Error closing input stream: %s", exc, exc_info=True)
            _LOGGER.info("Microphone capture stopped")
        with self._lock:
            self._buffer = None
            self._filled = 0


class FrameLoop:
    """Drives ``session.process_frame`` from a capture source at a fixed interval."""

    def __init__(
        self,
        session: Session,
        capture: MicrophoneCapture,
        on_output: Callable[[FrameOutput], None],
        *,
        interval: float = 1.0 / 60.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._session = session
        self._capture = capture
        self._on_output = on_output
        self._interval = interval
        self._clock = clock
        self._sleep = sleep
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def tick(self) -> FrameOutput | None:
        frame = self._capture.read_frame()
        if frame is None:
            return None
        output = self._session.process_frame(frame, self._capture.sample_rate, self._clock())
        self._on_output(output)
        return output

    def run(self, *, duration: float | None = None) -> None:
        """Block until :meth:`stop` is called or ``duration`` seconds have passed."""
        if not self._capture.start():
            raise CaptureError("No usable audio input device (is sounddevice installed?)")
        self._running = True
        started = self._clock()
        try:
            while self._running:
                self.tick()
                if duration is not None and self._clock() - started >= duration:
                    break
                self._sleep(self._interval)
        finally:
            self.stop()

    def stop(self) -> None:
        self._running = False
        self._capture.stop()
