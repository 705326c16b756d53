"""
Tests for the CaptureSession state machine.

This test suite verifies:
- State transitions (scan -> countdown -> capture -> process)
- Bounded retry (timeout after the attempt budget)
- Missing frames after the countdown
- Cancellation from every non-terminal state
- The asyncio driver and progress callbacks

Run with: pytest tests/test_capture_session.py -v
"""

import asyncio
import os
import sys
from typing import List, Optional

import numpy as np
import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.capture_session import (
    CaptureOutcome,
    CaptureSession,
    CaptureState,
    FailureKind,
)
from core.frame import Frame, FrameSource, SequenceFrameSource
from conftest import no_sleep


class ScriptedSource(FrameSource):
    """Serves frames from a list, counting polls; None entries mean 'no frame yet'."""

    def __init__(self, frames: List[Optional[Frame]], repeat_last: bool = True):
        self.frames = list(frames)
        self.repeat_last = repeat_last
        self.polls = 0

    def next_frame(self) -> Optional[Frame]:
        index = self.polls
        self.polls += 1
        if index < len(self.frames):
            return self.frames[index]
        return self.frames[-1] if self.repeat_last and self.frames else None


def make_session(source, target=2, on_capture=None, on_complete=None, **kwargs):
    def default_capture(frame):
        return np.ones(4)

    def default_complete(descriptors, captured):
        return CaptureOutcome.completed(len(descriptors))

    return CaptureSession(
        frame_source=source,
        target_count=target,
        on_capture=on_capture or default_capture,
        on_complete=on_complete or default_complete,
        **kwargs,
    )


class TestCaptureSessionTransitions:
    """Tests for the happy path, one tick at a time."""

    def test_initial_state(self, face_frame):
        session = make_session(SequenceFrameSource([face_frame]))
        assert session.state == CaptureState.IDLE
        assert session.attempts == 0
        assert session.outcome is None

    def test_single_capture_sequence(self, face_frame):
        source = ScriptedSource([face_frame])
        session = make_session(source, target=1)

        assert session.step() == CaptureState.SCANNING
        assert source.polls == 0

        assert session.step() == CaptureState.CAPTURING
        assert session.attempts == 1
        assert session.countdown == 2
        assert source.polls == 1

        # Countdown ticks consume no frames
        assert session.step() == CaptureState.CAPTURING
        assert session.countdown == 1
        assert source.polls == 1

        # Last tick takes a fresh frame
        assert session.step() == CaptureState.PROCESSING
        assert source.polls == 2
        assert session.captured == 1

        assert session.step() == CaptureState.COMPLETED
        assert session.outcome.ok
        assert session.outcome.value == 1
        assert session.outcome.attempts == 1
        assert session.outcome.captured == 1

    def test_rejected_frames_stay_scanning(self, face_frame, dark_frame):
        source = ScriptedSource([dark_frame, None, dark_frame, face_frame])
        session = make_session(source, target=1)

        session.step()  # IDLE -> SCANNING
        for _ in range(3):
            assert session.step() == CaptureState.SCANNING
        assert session.step() == CaptureState.CAPTURING
        assert session.attempts == 4

    def test_rejected_capture_still_counts(self, face_frame):
        """A hook returning None counts toward the target without a descriptor."""
        results = iter([None, np.ones(4)])
        received = {}

        def on_complete(descriptors, captured):
            received["descriptors"] = len(descriptors)
            received["captured"] = captured
            return CaptureOutcome.completed(None)

        session = make_session(
            ScriptedSource([face_frame]),
            target=2,
            on_capture=lambda frame: next(results),
            on_complete=on_complete,
        )
        outcome = asyncio.run(session.run(sleep=no_sleep))

        assert outcome.ok
        assert received == {"descriptors": 1, "captured": 2}
        assert session.rejected == 1

    def test_missing_frame_after_countdown_returns_to_scanning(self, face_frame):
        source = ScriptedSource([face_frame, None, face_frame])
        session = make_session(source, target=1, config={"countdown_ticks": 0})

        session.step()
        assert session.step() == CaptureState.CAPTURING
        assert session.step() == CaptureState.SCANNING
        assert session.captured == 0

    def test_finalize_failure_is_terminal(self, face_frame):
        def on_complete(descriptors, captured):
            return CaptureOutcome.failed(FailureKind.INSUFFICIENT_VALID_SAMPLES, "not enough")

        session = make_session(ScriptedSource([face_frame]), target=1, on_complete=on_complete)
        outcome = asyncio.run(session.run(sleep=no_sleep))

        assert session.state == CaptureState.FAILED
        assert outcome.failure_kind == FailureKind.INSUFFICIENT_VALID_SAMPLES

    def test_step_after_completion_raises(self, face_frame):
        session = make_session(ScriptedSource([face_frame]), target=1)
        asyncio.run(session.run(sleep=no_sleep))

        with pytest.raises(RuntimeError):
            session.step()

    def test_invalid_target(self, face_frame):
        with pytest.raises(ValueError):
            make_session(ScriptedSource([face_frame]), target=0)


class TestCaptureSessionTimeout:
    """Tests for the attempt budget."""

    def test_timeout_after_max_attempts(self, dark_frame):
        source = ScriptedSource([dark_frame])
        session = make_session(source, target=2)

        outcome = asyncio.run(session.run(sleep=no_sleep))

        assert outcome.state == CaptureState.FAILED
        assert outcome.failure_kind == FailureKind.TIMEOUT
        assert session.attempts == 50
        assert source.polls == 50
        assert outcome.failure.details["captured"] == 0

    def test_timeout_counts_only_scanning_polls(self, face_frame, dark_frame):
        """One good capture then darkness: budget still ends the session."""
        source = ScriptedSource([face_frame, face_frame, dark_frame])
        session = make_session(source, target=2, config={"max_attempts": 5})

        outcome = asyncio.run(session.run(sleep=no_sleep))

        assert outcome.failure_kind == FailureKind.TIMEOUT
        assert session.captured == 1
        assert session.attempts == 5

    def test_no_frames_at_all(self):
        session = make_session(ScriptedSource([None]), target=1, config={"max_attempts": 3})
        outcome = asyncio.run(session.run(sleep=no_sleep))
        assert outcome.failure_kind == FailureKind.TIMEOUT


class TestCaptureSessionCancel:
    """Tests for cancellation."""

    @pytest.mark.parametrize("steps", [0, 1, 2, 3])
    def test_cancel_from_any_active_state(self, face_frame, steps):
        session = make_session(ScriptedSource([face_frame]), target=2)
        for _ in range(steps):
            session.step()
        assert not session.is_terminal

        assert session.cancel()
        assert session.state == CaptureState.CANCELLED
        assert session.outcome.cancelled
        assert session.outcome.failure_kind == FailureKind.CANCELLED

    def test_cancel_discards_descriptors(self, face_frame):
        session = make_session(ScriptedSource([face_frame]), target=3)
        while session.captured < 1:
            session.step()
        assert len(session.descriptors) == 1

        session.cancel()
        assert session.descriptors == []

        # Stepping a cancelled session is a no-op
        assert session.step() == CaptureState.CANCELLED

    def test_cancel_after_completion_is_ignored(self, face_frame):
        session = make_session(ScriptedSource([face_frame]), target=1)
        asyncio.run(session.run(sleep=no_sleep))

        assert not session.cancel()
        assert session.state == CaptureState.COMPLETED

    def test_cancel_while_running(self, face_frame):
        """Cancellation from another task stops the driver at the next tick."""
        completed = []

        def on_complete(descriptors, captured):
            completed.append(True)
            return CaptureOutcome.completed(None)

        session = make_session(ScriptedSource([face_frame]), target=5, on_complete=on_complete)

        async def scenario():
            async def cancel_soon(_seconds):
                if session.captured >= 2:
                    session.cancel()

            return await session.run(sleep=cancel_soon)

        outcome = asyncio.run(scenario())

        assert outcome.cancelled
        assert completed == []
        assert session.descriptors == []

    def test_cancel_during_capture_hook(self, face_frame):
        """A descriptor finishing after cancel() is discarded."""
        session = None

        def on_capture(frame):
            session.cancel()
            return np.ones(4)

        session = make_session(ScriptedSource([face_frame]), target=2, on_capture=on_capture)
        outcome = asyncio.run(session.run(sleep=no_sleep))

        assert outcome.cancelled
        assert session.descriptors == []
        assert session.captured == 0


class TestCaptureSessionDriver:
    """Tests for run() and progress reporting."""

    def test_progress_reported_every_step(self, face_frame):
        progress = []
        session = make_session(
            ScriptedSource([face_frame]),
            target=1,
            on_progress=progress.append,
        )
        asyncio.run(session.run(sleep=no_sleep))

        states = [p.state for p in progress]
        assert states == [
            CaptureState.SCANNING,
            CaptureState.CAPTURING,
            CaptureState.CAPTURING,
            CaptureState.PROCESSING,
            CaptureState.COMPLETED,
        ]
        assert progress[1].face_detected
        assert progress[1].countdown == 2

    def test_sleep_intervals_follow_config(self, face_frame, dark_frame):
        delays = []

        async def record_sleep(seconds):
            delays.append(seconds)

        config = {
            "poll_interval": 0.01,
            "countdown_interval": 0.5,
            "post_capture_interval": 1.0,
        }
        session = make_session(
            ScriptedSource([dark_frame, face_frame]),
            target=2,
            config=config,
        )
        asyncio.run(session.run(sleep=record_sleep))

        # start, dark poll, accept, countdown tick, capture, accept, countdown, capture
        assert delays == [0.0, 0.01, 0.5, 0.5, 1.0, 0.5, 0.5, 0.0]
