"""Tests for voxsurvey.speech.aggregator — TranscriptAggregator."""

import asyncio

import pytest

from voxsurvey.speech.aggregator import TranscriptAggregator
from voxsurvey.speech.types import CancellationInProgress, NetworkError, NoSpeechDetected


def _aggregator(**kwargs) -> TranscriptAggregator:
    kwargs.setdefault("max_duration", 5.0)
    kwargs.setdefault("trailing_silence", 5.0)
    return TranscriptAggregator(**kwargs)


class TestResolution:

    async def test_explicit_stop_keeps_partial(self):
        agg = _aggregator()
        agg.start()
        agg.on_partial("social")
        agg.on_partial("social media")
        agg.stop()
        assert await agg.wait() == "social media"

    async def test_finals_joined_in_order(self):
        agg = _aggregator()
        agg.start()
        agg.on_final("social media")
        agg.on_partial("and sea")
        agg.on_final("and search engine")
        agg.stop()
        assert await agg.wait() == "social media and search engine"

    async def test_trailing_silence_resolves(self):
        agg = _aggregator(trailing_silence=0.01)
        agg.start()
        agg.on_final("yes")
        assert await asyncio.wait_for(agg.wait(), 1.0) == "yes"

    async def test_silence_timer_restarts_on_new_result(self):
        agg = _aggregator(trailing_silence=0.1)
        agg.start()
        agg.on_partial("one")
        await asyncio.sleep(0.06)
        agg.on_partial("one two")
        await asyncio.sleep(0.06)
        assert agg.is_done is False
        assert await asyncio.wait_for(agg.wait(), 1.0) == "one two"

    async def test_max_duration_resolves(self):
        agg = _aggregator(max_duration=0.01)
        agg.start()
        agg.on_partial("still talking")
        assert await asyncio.wait_for(agg.wait(), 1.0) == "still talking"

    async def test_onset_timeout_without_speech(self):
        agg = _aggregator(onset_timeout=0.01)
        agg.start()
        with pytest.raises(NoSpeechDetected):
            await asyncio.wait_for(agg.wait(), 1.0)

    async def test_speech_lifts_onset_limit(self):
        agg = _aggregator(onset_timeout=0.02, trailing_silence=0.2)
        agg.start()
        agg.on_partial("hello")
        await asyncio.sleep(0.05)
        assert agg.is_done is False
        agg.stop()
        assert await agg.wait() == "hello"

    async def test_stop_with_nothing_heard(self):
        agg = _aggregator()
        agg.start()
        agg.stop()
        with pytest.raises(NoSpeechDetected):
            await agg.wait()


class TestErrorsAndCancel:

    async def test_error_without_transcript_raises_it(self):
        agg = _aggregator()
        agg.start()
        agg.on_error(NetworkError("socket closed"))
        with pytest.raises(NetworkError):
            await agg.wait()

    async def test_error_after_speech_keeps_transcript(self):
        agg = _aggregator()
        agg.start()
        agg.on_final("good")
        agg.on_error(NetworkError("socket closed"))
        assert await agg.wait() == "good"

    async def test_cancel_raises_cancellation(self):
        agg = _aggregator()
        agg.start()
        agg.on_partial("half")
        agg.cancel()
        with pytest.raises(CancellationInProgress):
            await agg.wait()

    async def test_late_events_ignored(self):
        agg = _aggregator()
        agg.start()
        agg.on_final("yes")
        agg.stop()
        agg.on_final("no")
        agg.on_partial("maybe")
        agg.on_error(NetworkError("late"))
        assert await agg.wait() == "yes"

    async def test_resolves_once(self):
        agg = _aggregator()
        agg.start()
        agg.on_final("yes")
        agg.stop()
        agg.cancel()
        assert await agg.wait() == "yes"

    async def test_no_timers_left_after_wait(self):
        agg = _aggregator(trailing_silence=0.01)
        agg.start()
        agg.on_final("yes")
        await agg.wait()
        assert agg.pending_timers == 0
