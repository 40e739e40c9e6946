"""Microphone capture with energy-based voice activity detection."""

import asyncio
import logging
import threading

import numpy as np
import sounddevice as sd

from voxsurvey.config import (
    AUDIO_SAMPLE_RATE,
    LISTEN_ONSET_TIMEOUT,
    MAX_LISTEN_DURATION,
    SILENCE_THRESHOLD,
    TRAILING_SILENCE,
)
from voxsurvey.speech.types import CancellationInProgress, DeviceUnavailable, PermissionDenied

logger = logging.getLogger(__name__)

_CHUNK_DURATION = 0.1  # seconds per read


class _CaptureFlags:
    """Stop/cancel requests for one capture and the exit signal of its worker."""

    def __init__(self) -> None:
        self.stop = threading.Event()
        self.cancel = threading.Event()
        self.finished = threading.Event()

    @property
    def interrupted(self) -> bool:
        return self.stop.is_set() or self.cancel.is_set()


class MicrophoneCapture:
    """Captures audio from the default input device using sounddevice.

    Probes for a device at start and degrades gracefully when there is none.
    The blocking read loop runs in a worker thread and polls the flags of its
    own capture: *stop* keeps the frames captured so far, *cancel* throws
    them away. Cancelling the awaiting task does not end the thread, so a
    new capture first cancels the previous worker and waits for it to close
    its stream. At most one input stream is open at a time.
    """

    def __init__(self) -> None:
        self._available: bool = False
        self._listening: bool = False
        self._current: _CaptureFlags | None = None

    async def start(self) -> None:
        """Probe for an input device. No-op if unavailable."""
        try:
            sd.query_devices(kind="input")
            self._available = True
            logger.info("Microphone input device detected — capture enabled")
        except Exception:
            self._available = False
            logger.warning("No microphone input device — capture disabled")

    async def stop(self) -> None:
        """Cancel any capture, wait for its stream to close and release resources."""
        await self._release_previous()
        self._listening = False
        self._available = False

    @property
    def is_available(self) -> bool:
        return self._available

    @property
    def is_listening(self) -> bool:
        return self._listening

    def request_stop(self) -> None:
        """End the current capture early, keeping what was recorded."""
        if self._current is not None:
            self._current.stop.set()

    def cancel(self) -> None:
        """Abandon the current capture."""
        if self._current is not None:
            self._current.cancel.set()

    async def _release_previous(self) -> None:
        previous = self._current
        if previous is None or previous.finished.is_set():
            return
        previous.cancel.set()
        logger.debug("Waiting for the previous capture to close its stream")
        await asyncio.to_thread(previous.finished.wait)

    async def capture_until_silence(
        self,
        *,
        max_duration: float | None = None,
        silence_threshold: float | None = None,
        silence_duration: float | None = None,
        sample_rate: int | None = None,
        listen_timeout: float | None = None,
    ) -> bytes | None:
        """Record until trailing silence, explicit stop or *max_duration*.

        Returns PCM 16-bit mono bytes, or None when no speech started within
        *listen_timeout*. Raises DeviceUnavailable / PermissionDenied when
        the input stream cannot be opened and CancellationInProgress when
        :meth:`cancel` was called.
        """
        if not self._available:
            raise DeviceUnavailable("no microphone input device")

        max_dur = max_duration or MAX_LISTEN_DURATION
        sil_thresh = silence_threshold or SILENCE_THRESHOLD
        sil_dur = silence_duration or TRAILING_SILENCE
        sr = sample_rate or AUDIO_SAMPLE_RATE
        timeout = listen_timeout or LISTEN_ONSET_TIMEOUT

        await self._release_previous()
        flags = _CaptureFlags()
        self._current = flags
        self._listening = True
        try:
            result = await asyncio.to_thread(
                self._capture_sync, flags, max_dur, sil_thresh, sil_dur, sr, timeout
            )
        except asyncio.CancelledError:
            flags.cancel.set()
            raise
        finally:
            self._listening = False

        if flags.cancel.is_set():
            raise CancellationInProgress("capture cancelled")
        return result

    def _capture_sync(
        self,
        flags: _CaptureFlags,
        max_duration: float,
        silence_threshold: float,
        silence_duration: float,
        sample_rate: int,
        listen_timeout: float,
    ) -> bytes | None:
        try:
            return self._record(
                flags,
                max_duration,
                silence_threshold,
                silence_duration,
                sample_rate,
                listen_timeout,
            )
        finally:
            flags.finished.set()

    def _record(
        self,
        flags: _CaptureFlags,
        max_duration: float,
        silence_threshold: float,
        silence_duration: float,
        sample_rate: int,
        listen_timeout: float,
    ) -> bytes | None:
        """Synchronous capture — runs in a worker thread.

        1. Wait for speech onset (RMS > threshold), up to listen_timeout
        2. Record until RMS stays under threshold for silence_duration,
           max_duration is reached, or a stop/cancel is requested
        """
        frames: list[np.ndarray] = []
        chunk_samples = int(sample_rate * _CHUNK_DURATION)
        speech_started = False
        silence_elapsed = 0.0
        total_elapsed = 0.0
        wait_elapsed = 0.0

        try:
            stream = sd.InputStream(
                samplerate=sample_rate,
                channels=1,
                dtype="int16",
                blocksize=chunk_samples,
            )
        except sd.PortAudioError as exc:
            if "permission" in str(exc).lower():
                raise PermissionDenied(str(exc)) from exc
            raise DeviceUnavailable(str(exc)) from exc

        try:
            with stream:
                while wait_elapsed < listen_timeout and not flags.interrupted:
                    data, _overflowed = stream.read(chunk_samples)
                    wait_elapsed += _CHUNK_DURATION
                    if self._compute_rms(data) > silence_threshold:
                        speech_started = True
                        frames.append(data.copy())
                        total_elapsed += _CHUNK_DURATION
                        break

                if not speech_started:
                    return None

                while total_elapsed < max_duration and not flags.interrupted:
                    data, _overflowed = stream.read(chunk_samples)
                    frames.append(data.copy())
                    total_elapsed += _CHUNK_DURATION

                    if self._compute_rms(data) < silence_threshold:
                        silence_elapsed += _CHUNK_DURATION
                        if silence_elapsed >= silence_duration:
                            break
                    else:
                        silence_elapsed = 0.0
        except sd.PortAudioError:
            logger.warning("Microphone stream error", exc_info=True)
            if not frames:
                raise DeviceUnavailable("microphone stream failed") from None

        if not frames or flags.cancel.is_set():
            return None
        return np.concatenate(frames).tobytes()

    @staticmethod
    def _compute_rms(data: np.ndarray) -> float:
        """Compute RMS amplitude of int16 audio data, normalized to 0.0-1.0."""
        float_data = data.astype(np.float32) / 32768.0
        return float(np.sqrt(np.mean(float_data ** 2)))
