"""Single-channel audio output with interrupt support.

There is exactly one output per session: starting a new clip stops the one
currently playing.
"""

import asyncio
import logging

import numpy as np
import sounddevice as sd

from voxsurvey.config import AUDIO_SAMPLE_RATE
from voxsurvey.speech.types import DeviceUnavailable

logger = logging.getLogger(__name__)


class AudioPlayer:
    """Plays raw PCM int16 mono clips through sounddevice."""

    def __init__(self, sample_rate: int = AUDIO_SAMPLE_RATE) -> None:
        self._sample_rate = sample_rate
        self._audio_available: bool = False
        self._playing: bool = False
        self._generation: int = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Probe for an output device."""
        try:
            sd.query_devices(kind="output")
            self._audio_available = True
            logger.info("Audio output device detected — playback enabled")
        except Exception:
            self._audio_available = False
            logger.warning("No audio output device — playback disabled")

    async def stop(self) -> None:
        """Halt any in-progress playback."""
        self.interrupt()
        self._audio_available = False

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def is_available(self) -> bool:
        """Whether an audio output device was detected at startup."""
        return self._audio_available

    @property
    def is_playing(self) -> bool:
        return self._playing

    # ------------------------------------------------------------------
    # Playback
    # ------------------------------------------------------------------

    async def play(self, pcm_bytes: bytes) -> bool:
        """Play *pcm_bytes* to completion.

        Returns False when the clip was interrupted before it finished.
        """
        if not self._audio_available:
            raise DeviceUnavailable("no audio output device")

        self.interrupt()
        self._generation += 1
        generation = self._generation
        self._playing = True
        try:
            await asyncio.to_thread(self._play_sync, pcm_bytes)
        except sd.PortAudioError as exc:
            raise DeviceUnavailable(str(exc)) from exc
        finally:
            if generation == self._generation:
                self._playing = False
        return generation == self._generation

    def interrupt(self) -> None:
        """Stop whatever is playing now."""
        if not self._playing:
            return
        self._generation += 1
        self._playing = False
        try:
            sd.stop()
        except Exception:
            logger.debug("sd.stop() failed during interrupt", exc_info=True)

    def _play_sync(self, pcm_bytes: bytes) -> None:
        """Convert int16 PCM bytes to float32 and play via sounddevice.

        Runs in a worker thread via ``asyncio.to_thread``; ``sd.stop()`` from
        :meth:`interrupt` makes ``sd.wait()`` return early.
        """
        audio_int16 = np.frombuffer(pcm_bytes, dtype=np.int16)
        audio_float32 = audio_int16.astype(np.float32) / 32768.0
        sd.play(audio_float32, samplerate=self._sample_rate)
        sd.wait()
