"""Tests for the analysis polling state machine."""
import asyncio

import pytest

from wingman.config import PollingPolicy
from wingman.interview.errors import CollaboratorError, PollingInProgressError
from wingman.interview.polling import (
    MSG_COMPLETE, MSG_NETWORK_ERROR, MSG_TIMED_OUT, MSG_WAITING, AnalysisPoller, progress_message,
)
from wingman.interview.schemas import PollingState
from wingman.interview.testing import FakeClock, MockResultsStore, make_segment_record

POLICY = PollingPolicy(interval_s=10.0, grace_window_s=30.0, hard_timeout_s=600.0)


def pending_record(segment_index):
    return {"id": f"pending-{segment_index}", "segmentIndex": segment_index, "results": {}}


def make_poller(replies, clock=None, progress=None):
    return AnalysisPoller(
        "session-1", MockResultsStore(replies), policy=POLICY,
        clock=clock or FakeClock(), on_progress=progress.append if progress is not None else None,
    )


class TestPollOnce:
    def test_partial_results_keep_polling_until_grace(self):
        clock = FakeClock()
        rows = [make_segment_record(0), make_segment_record(1), pending_record(2)]
        poller = make_poller([rows], clock=clock)

        async def scenario():
            poller.begin(expected_segments=3)
            states = []
            for _ in range(4):
                clock.advance(10)
                states.append(await poller.poll_once())
            return states

        states = asyncio.run(scenario())
        assert states[:3] == [PollingState.POLLING] * 3
        assert states[3] is PollingState.FORCED_COMPLETE
        assert poller.received_segments == 3
        assert len(poller.qualifying) == 2

    def test_new_segment_resets_grace_window(self):
        clock = FakeClock()
        replies = [[make_segment_record(0)], [make_segment_record(0)], [make_segment_record(0)],
                   [make_segment_record(0), make_segment_record(1)]]
        poller = make_poller(replies, clock=clock)

        async def scenario():
            poller.begin(expected_segments=3)
            for _ in range(4):
                clock.advance(10)
                await poller.poll_once()
            clock.advance(20)
            return await poller.poll_once()

        assert asyncio.run(scenario()) is PollingState.POLLING
        assert poller.last_progress_at == 40

    def test_not_ready_is_empty(self):
        poller = make_poller([None])

        async def scenario():
            poller.begin()
            return await poller.poll_once()

        assert asyncio.run(scenario()) is PollingState.POLLING
        assert poller.progress == MSG_WAITING

    def test_begin_twice_raises(self):
        poller = make_poller([None])
        poller.begin()
        with pytest.raises(PollingInProgressError):
            poller.begin()


class TestRun:
    def test_satisfied_when_all_segments_arrive(self):
        progress = []
        poller = make_poller([None, [make_segment_record(0)]], progress=progress)
        outcome = asyncio.run(poller.run(expected_segments=1))
        assert outcome.state is PollingState.SATISFIED
        assert outcome.attempts == 2
        assert outcome.elapsed_s == pytest.approx(20)
        assert len(outcome.segments) == 1
        assert progress == [MSG_WAITING, MSG_COMPLETE]

    def test_forced_complete_after_grace(self):
        rows = [make_segment_record(0), make_segment_record(1), pending_record(2)]
        progress = []
        poller = make_poller([rows], progress=progress)
        outcome = asyncio.run(poller.run(expected_segments=3))
        assert outcome.state is PollingState.FORCED_COMPLETE
        assert outcome.has_results
        assert [s.segment_index for s in outcome.segments] == [0, 1]
        assert outcome.elapsed_s == pytest.approx(40)
        assert progress_message(2, 3) in progress

    def test_timed_out_without_results(self):
        poller = make_poller([None])
        outcome = asyncio.run(poller.run())
        assert outcome.state is PollingState.TIMED_OUT
        assert not outcome.has_results
        assert outcome.segments == []
        assert outcome.attempts == 60
        assert outcome.progress == MSG_TIMED_OUT

    def test_only_pending_rows_time_out(self):
        poller = make_poller([[pending_record(0)]])
        outcome = asyncio.run(poller.run())
        assert outcome.state is PollingState.TIMED_OUT

    def test_network_error_keeps_polling(self):
        progress = []
        replies = [CollaboratorError("results_store", "connection reset"), [make_segment_record(0)]]
        poller = make_poller(replies, progress=progress)
        outcome = asyncio.run(poller.run())
        assert outcome.state is PollingState.SATISFIED
        assert MSG_NETWORK_ERROR in progress

    def test_malformed_rows_never_satisfy(self):
        rows = [make_segment_record(0), "garbage"]
        poller = make_poller([rows])
        outcome = asyncio.run(poller.run(expected_segments=2))
        assert outcome.state is PollingState.FORCED_COMPLETE
        assert len(outcome.segments) == 1

    def test_can_run_again_after_finishing(self):
        poller = make_poller([[make_segment_record(0)]])
        asyncio.run(poller.run())
        outcome = asyncio.run(poller.run())
        assert outcome.state is PollingState.SATISFIED
