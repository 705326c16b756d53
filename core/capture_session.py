"""
Capture Session Module

This module drives multi-frame capture for both enrollment and verification.
A CaptureSession is an explicit state machine that owns all transient state
of one capture attempt (attempt counter, countdown, accumulated descriptors)
and is discarded once it reaches a terminal state.

States:
    IDLE -> SCANNING -> CAPTURING -> ... -> PROCESSING -> COMPLETED | FAILED
    CANCELLED is reachable from every non-terminal state.

The session never sleeps on its own. step() advances exactly one tick and
returns immediately; run() is a cooperative asyncio driver that calls step()
and awaits an injected sleep function between ticks. Tests drive step()
directly or pass a no-op sleep to run().

Controller-specific behaviour is plugged in through two hooks:
    on_capture(frame)            -> descriptor, or None to reject the capture
    on_complete(descriptors, n)  -> CaptureOutcome (store, or compare + vote)

Usage:
    session = CaptureSession(
        frame_source=source,
        target_count=5,
        on_capture=extract,
        on_complete=finalize,
        config=get_capture_config(),
    )
    outcome = await session.run()
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Generic, List, Optional, TypeVar

import numpy as np

from core.frame import Frame, FrameSource
from core.quality_gate import QualityGate, QualityReport

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CaptureState(str, Enum):
    """States of the capture state machine."""

    IDLE = "idle"
    SCANNING = "scanning"
    CAPTURING = "capturing"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATES = frozenset({CaptureState.COMPLETED, CaptureState.FAILED, CaptureState.CANCELLED})


class FailureKind(str, Enum):
    """Terminal failure kinds returned to the caller (never raised)."""

    INSUFFICIENT_VALID_SAMPLES = "insufficient_valid_samples"
    NO_ENROLLMENT_RECORD = "no_enrollment_record"
    VERIFICATION_FAILED = "verification_failed"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"


@dataclass
class CaptureFailure:
    """
    Typed failure carried by a terminal outcome.

    Attributes:
        kind: What went wrong.
        message: Human-readable explanation for logs and UI prompts.
        details: Diagnostics, e.g. the scores that failed the voting rule.
    """

    kind: FailureKind
    message: str = ""
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass
class CaptureOutcome(Generic[T]):
    """
    Terminal result of a capture session.

    Attributes:
        state: COMPLETED, FAILED or CANCELLED.
        value: The enrollment record or verification result, when available.
               A failed verification still carries its VerificationResult.
        failure: Set when state is FAILED or CANCELLED.
        attempts: Scanning polls used by the session.
        captured: Frames captured by the session.
    """

    state: CaptureState
    value: Optional[T] = None
    failure: Optional[CaptureFailure] = None
    attempts: int = 0
    captured: int = 0

    @property
    def ok(self) -> bool:
        return self.state is CaptureState.COMPLETED

    @property
    def cancelled(self) -> bool:
        return self.state is CaptureState.CANCELLED

    @property
    def failure_kind(self) -> Optional[FailureKind]:
        return self.failure.kind if self.failure else None

    @classmethod
    def completed(cls, value: T) -> "CaptureOutcome[T]":
        return cls(state=CaptureState.COMPLETED, value=value)

    @classmethod
    def failed(
        cls,
        kind: FailureKind,
        message: str = "",
        details: Optional[Dict[str, Any]] = None,
        value: Optional[T] = None,
    ) -> "CaptureOutcome[T]":
        return cls(
            state=CaptureState.FAILED,
            value=value,
            failure=CaptureFailure(kind=kind, message=message, details=dict(details or {})),
        )

    @classmethod
    def aborted(cls) -> "CaptureOutcome[T]":
        return cls(
            state=CaptureState.CANCELLED,
            failure=CaptureFailure(kind=FailureKind.CANCELLED, message="Capture cancelled"),
        )


@dataclass
class CaptureProgress:
    """
    Snapshot of a running session for UI feedback.

    Attributes:
        state: Current state.
        attempts: Scanning polls used so far.
        max_attempts: Attempt budget.
        captured: Frames captured so far (including rejected captures).
        target: Number of captures needed.
        countdown: Remaining countdown ticks while CAPTURING.
        face_detected: Whether the last polled frame passed the quality gate.
        last_report: QualityReport of the last polled frame.
    """

    state: CaptureState
    attempts: int
    max_attempts: int
    captured: int
    target: int
    countdown: int = 0
    face_detected: bool = False
    last_report: Optional[QualityReport] = None


CaptureHook = Callable[[Frame], Optional[np.ndarray]]
FinalizeHook = Callable[[List[np.ndarray], int], CaptureOutcome]
ProgressCallback = Callable[[CaptureProgress], None]
SleepFunction = Callable[[float], Awaitable[Any]]


class CaptureSession:
    """
    Bounded-retry, cancellable capture state machine.

    Attributes:
        max_attempts: Scanning polls allowed before failing with TIMEOUT.
        countdown_ticks: UX pause (in ticks) between acceptance and capture.
        poll_interval: Seconds between Scanning polls (run() only).
        countdown_interval: Seconds per countdown tick (run() only).
        post_capture_interval: Seconds to wait after a capture (run() only).
    """

    MAX_ATTEMPTS = 50
    COUNTDOWN_TICKS = 2
    POLL_INTERVAL = 0.05
    COUNTDOWN_INTERVAL = 0.8
    POST_CAPTURE_INTERVAL = 1.5

    def __init__(
        self,
        frame_source: FrameSource,
        target_count: int,
        on_capture: CaptureHook,
        on_complete: FinalizeHook,
        config: Optional[Dict[str, Any]] = None,
        quality_gate: Optional[QualityGate] = None,
        on_progress: Optional[ProgressCallback] = None,
        name: str = "capture",
    ):
        """
        Initialize a session. Nothing happens until step() or run() is called.

        Args:
            frame_source: Where frames are polled from.
            target_count: Captures needed before PROCESSING.
            on_capture: Turns a captured frame into a descriptor (None rejects it).
            on_complete: Builds the outcome from the accumulated descriptors.
            config: Optional `capture` section (max_attempts, countdown_ticks,
                    poll_interval, countdown_interval, post_capture_interval).
            quality_gate: Gate used while scanning (default thresholds if None).
            on_progress: Called with a CaptureProgress after every step.
            name: Label used in log messages.
        """
        if target_count < 1:
            raise ValueError(f"target_count must be >= 1, got {target_count}")
        if config is None:
            config = {}

        self.frame_source = frame_source
        self.target_count = target_count
        self.quality_gate = quality_gate or QualityGate()
        self.name = name

        self.max_attempts = int(config.get("max_attempts", self.MAX_ATTEMPTS))
        self.countdown_ticks = int(config.get("countdown_ticks", self.COUNTDOWN_TICKS))
        self.poll_interval = float(config.get("poll_interval", self.POLL_INTERVAL))
        self.countdown_interval = float(config.get("countdown_interval", self.COUNTDOWN_INTERVAL))
        self.post_capture_interval = float(config.get("post_capture_interval", self.POST_CAPTURE_INTERVAL))

        self._on_capture = on_capture
        self._on_complete = on_complete
        self._on_progress = on_progress

        self.state = CaptureState.IDLE
        self.attempts = 0
        self.captured = 0
        self.rejected = 0
        self.countdown = 0
        self.descriptors: List[np.ndarray] = []
        self.last_report: Optional[QualityReport] = None
        self.outcome: Optional[CaptureOutcome] = None
        self._next_delay = 0.0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def progress(self) -> CaptureProgress:
        return CaptureProgress(
            state=self.state,
            attempts=self.attempts,
            max_attempts=self.max_attempts,
            captured=self.captured,
            target=self.target_count,
            countdown=self.countdown,
            face_detected=bool(self.last_report and self.last_report.accepted),
            last_report=self.last_report,
        )

    def cancel(self) -> bool:
        """
        Abort the session and discard accumulated descriptors.

        Returns:
            True if the session was cancelled, False if it had already finished.
        """
        if self.is_terminal:
            return False

        logger.info(f"[{self.name}] Cancelled in state {self.state.value} "
                    f"({len(self.descriptors)} descriptors discarded)")
        self.descriptors = []
        self.state = CaptureState.CANCELLED
        self.outcome = CaptureOutcome.aborted()
        self._stamp_outcome()
        return True

    def step(self) -> CaptureState:
        """
        Advance the state machine by one tick.

        Returns:
            The state after the tick.

        Raises:
            RuntimeError: If the session already reached a terminal state
                          other than CANCELLED.
        """
        if self.state is CaptureState.CANCELLED:
            return self.state
        if self.is_terminal:
            raise RuntimeError(f"Session already finished in state {self.state.value}")

        if self.state is CaptureState.IDLE:
            self._start()
        elif self.state is CaptureState.SCANNING:
            self._scan()
        elif self.state is CaptureState.CAPTURING:
            self._capture()
        elif self.state is CaptureState.PROCESSING:
            self._process()

        if self.is_terminal:
            self._stamp_outcome()

        if self._on_progress is not None:
            self._on_progress(self.progress)

        return self.state

    async def run(self, sleep: Optional[SleepFunction] = None) -> CaptureOutcome:
        """
        Drive the session to a terminal state.

        Cancellation from another task takes effect at the next tick.

        Args:
            sleep: Awaitable delay function; defaults to asyncio.sleep.

        Returns:
            The terminal CaptureOutcome.
        """
        if sleep is None:
            sleep = asyncio.sleep

        while not self.is_terminal:
            self.step()
            if self.is_terminal:
                break
            await sleep(self._next_delay)

        return self.outcome

    # ------------------------------------------------------------------
    # State handlers
    # ------------------------------------------------------------------

    def _start(self) -> None:
        logger.info(f"[{self.name}] Scanning for {self.target_count} captures "
                    f"(max {self.max_attempts} attempts)")
        self.state = CaptureState.SCANNING
        self._next_delay = 0.0

    def _scan(self) -> None:
        if self.attempts >= self.max_attempts:
            logger.warning(f"[{self.name}] Attempt budget exhausted after "
                           f"{self.captured}/{self.target_count} captures")
            self.state = CaptureState.FAILED
            self.outcome = CaptureOutcome.failed(
                FailureKind.TIMEOUT,
                message="Could not capture enough frames before the attempt budget ran out",
                details={
                    "attempts": self.attempts,
                    "captured": self.captured,
                    "target": self.target_count,
                },
            )
            return

        self.attempts += 1
        self._next_delay = self.poll_interval

        frame = self.frame_source.next_frame()
        if frame is None or self.state is CaptureState.CANCELLED:
            return

        self.last_report = self.quality_gate.evaluate(frame)
        if not self.last_report.accepted:
            return

        logger.debug(f"[{self.name}] Face detected, capture "
                     f"{self.captured + 1}/{self.target_count}")
        self.state = CaptureState.CAPTURING
        self.countdown = self.countdown_ticks
        self._next_delay = self.countdown_interval

    def _capture(self) -> None:
        if self.countdown > 0:
            self.countdown -= 1
            if self.countdown > 0:
                self._next_delay = self.countdown_interval
                return

        frame = self.frame_source.next_frame()
        if self.state is CaptureState.CANCELLED:
            return
        if frame is None:
            logger.debug(f"[{self.name}] No frame available after countdown")
            self.state = CaptureState.SCANNING
            self._next_delay = self.poll_interval
            return

        descriptor = self._on_capture(frame)
        if self.state is CaptureState.CANCELLED:
            return

        self.captured += 1
        if descriptor is None:
            self.rejected += 1
        else:
            self.descriptors.append(descriptor)

        if self.captured >= self.target_count:
            self.state = CaptureState.PROCESSING
            self._next_delay = 0.0
        else:
            self.state = CaptureState.SCANNING
            self._next_delay = self.post_capture_interval

    def _process(self) -> None:
        logger.info(f"[{self.name}] Processing {len(self.descriptors)} descriptors "
                    f"({self.rejected} captures rejected)")
        outcome = self._on_complete(list(self.descriptors), self.captured)
        if self.state is CaptureState.CANCELLED:
            return

        self.outcome = outcome
        self.state = outcome.state

    def _stamp_outcome(self) -> None:
        if self.outcome is not None:
            self.outcome.attempts = self.attempts
            self.outcome.captured = self.captured
