"""Collapses a stream of interim/final recognition events into one transcript.

Streaming recognizers report many partial hypotheses and zero or more final
phrases per utterance. A ``TranscriptAggregator`` owns the timers that decide
when the utterance is over and resolves exactly once per listen:

- explicit :meth:`stop`
- ``max_duration`` elapsed since :meth:`start`
- ``trailing_silence`` elapsed since the last non-empty result
- ``onset_timeout`` elapsed without any non-empty result

Event callbacks may arrive after the aggregator finished; they are ignored.
"""

import asyncio
import logging

from voxsurvey.speech.types import CancellationInProgress, NoSpeechDetected, SpeechError

logger = logging.getLogger(__name__)


class TranscriptAggregator:
    """Aggregates recognizer events for a single listen operation."""

    def __init__(
        self,
        *,
        max_duration: float,
        trailing_silence: float,
        onset_timeout: float | None = None,
    ) -> None:
        self._max_duration = max_duration
        self._trailing_silence = trailing_silence
        self._onset_timeout = onset_timeout
        self._finals: list[str] = []
        self._partial: str = ""
        self._heard: bool = False
        self._done = asyncio.Event()
        self._error: SpeechError | None = None
        self._cancelled: bool = False
        self._started_at: float = 0.0
        self._max_task: asyncio.Task | None = None
        self._silence_task: asyncio.Task | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Arm the max-duration (and onset) timer. Must run on the event loop."""
        self._started_at = asyncio.get_running_loop().time()
        limit = self._max_duration
        if self._onset_timeout is not None:
            limit = min(limit, self._onset_timeout)
        self._max_task = asyncio.create_task(self._expire_after(limit, "max"))

    @property
    def is_done(self) -> bool:
        return self._done.is_set()

    @property
    def pending_timers(self) -> int:
        return sum(
            1
            for task in (self._max_task, self._silence_task)
            if task is not None and not task.done()
        )

    @property
    def transcript(self) -> str:
        parts = [*self._finals]
        if self._partial:
            parts.append(self._partial)
        return " ".join(part.strip() for part in parts if part.strip())

    # ------------------------------------------------------------------
    # Recognizer events
    # ------------------------------------------------------------------

    def on_partial(self, text: str) -> None:
        if self.is_done or not text.strip():
            return
        self._partial = text
        self._mark_heard()

    def on_final(self, text: str) -> None:
        if self.is_done:
            return
        self._partial = ""
        if text.strip():
            self._finals.append(text)
            self._mark_heard()

    def on_error(self, error: SpeechError) -> None:
        if self.is_done:
            return
        logger.debug("Recognizer reported %s", type(error).__name__)
        self._error = error
        self._finish()

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    def stop(self) -> None:
        """Explicit stop: resolve with whatever has been heard."""
        self._finish()

    def cancel(self) -> None:
        """Abandon the listen; :meth:`wait` raises ``CancellationInProgress``."""
        if self.is_done:
            self._clear_timers()
            return
        self._cancelled = True
        self._finish()

    async def wait(self) -> str:
        """Block until the utterance is over and return the transcript."""
        try:
            await self._done.wait()
        finally:
            self._clear_timers()

        if self._cancelled:
            raise CancellationInProgress("listen cancelled")
        transcript = self.transcript
        if transcript:
            return transcript
        if self._error is not None:
            raise self._error
        raise NoSpeechDetected("no speech captured")

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------

    def _mark_heard(self) -> None:
        if not self._heard:
            self._heard = True
            # Speech started: the onset limit no longer applies, only max duration.
            if self._onset_timeout is not None and self._onset_timeout < self._max_duration:
                self._restart_max_timer()
        if self._silence_task is not None and not self._silence_task.done():
            self._silence_task.cancel()
        self._silence_task = asyncio.create_task(
            self._expire_after(self._trailing_silence, "silence")
        )

    def _restart_max_timer(self) -> None:
        if self._max_task is None:
            return
        self._max_task.cancel()
        elapsed = asyncio.get_running_loop().time() - self._started_at
        remaining = max(0.0, self._max_duration - elapsed)
        self._max_task = asyncio.create_task(self._expire_after(remaining, "max"))

    async def _expire_after(self, seconds: float, reason: str) -> None:
        await asyncio.sleep(seconds)
        logger.debug("Listen finished by %s timer after %.2fs", reason, seconds)
        self._finish()

    def _finish(self) -> None:
        if self.is_done:
            return
        self._done.set()
        self._clear_timers()

    def _clear_timers(self) -> None:
        current = asyncio.current_task()
        for task in (self._max_task, self._silence_task):
            if task is not None and not task.done() and task is not current:
                task.cancel()
        self._max_task = None
        self._silence_task = None
