"""
Verification Controller

Checks a live capture against the stored enrollment record of an identity.

Verification flow:
    1. Look up the record. Without one, return NO_ENROLLMENT_RECORD
       immediately, before any frame is polled.
    2. Capture `sample_count` frames through a CaptureSession (no secondary
       quality check) and extract a descriptor from each.
    3. Score every probe against every enrolled descriptor and apply the
       MultiSampleVote rule.
    4. On success, refresh the record's last_used_at.

Usage:
    from core.verification import get_verification_controller

    controller = get_verification_controller()
    outcome = await controller.verify("alice", frame_source)
    result = outcome.value  # VerificationResult, also on VERIFICATION_FAILED
"""

import logging
from typing import Any, Dict, List, Optional

import numpy as np

from core.capture_session import (
    CaptureOutcome,
    CaptureSession,
    FailureKind,
    ProgressCallback,
    SleepFunction,
)
from core.clock import Clock, SystemClock
from core.descriptor_extractor import DescriptorExtractor
from core.frame import Frame, FrameSource
from core.matching.interfaces import SimilarityScorer
from core.matching.similarity import CorrelationDistanceScorer
from core.matching.voting import MultiSampleVote, VerificationResult
from core.quality_gate import QualityGate
from core.record_store import RecordStore

logger = logging.getLogger(__name__)

__all__ = ["VerificationController", "VerificationResult", "get_verification_controller"]


class VerificationController:
    """
    Runs verification sessions against stored records.

    Attributes:
        sample_count: Probe captures per verification.
    """

    SAMPLE_COUNT = 3

    def __init__(
        self,
        store: RecordStore,
        clock: Optional[Clock] = None,
        quality_gate: Optional[QualityGate] = None,
        extractor: Optional[DescriptorExtractor] = None,
        scorer: Optional[SimilarityScorer] = None,
        vote: Optional[MultiSampleVote] = None,
        config: Optional[Dict[str, Any]] = None,
        capture_config: Optional[Dict[str, Any]] = None,
    ):
        """
        Args:
            store: Where records are read from.
            clock: Time source for last_used_at updates.
            quality_gate: Gate used while scanning.
            extractor: Turns captured frames into descriptors.
            scorer: Pairwise similarity (CorrelationDistanceScorer by default).
            vote: Decision rule (built from `config` by default).
            config: `verification` section (sample_count, similarity_threshold,
                    min_good_fraction, min_average_similarity).
            capture_config: `capture` section passed to every session.
        """
        if config is None:
            config = {}
        self.store = store
        self.clock = clock or SystemClock()
        self.quality_gate = quality_gate or QualityGate()
        self.extractor = extractor or DescriptorExtractor()
        self.scorer = scorer or CorrelationDistanceScorer(config)
        self.vote = vote or MultiSampleVote(config)
        self.capture_config = dict(capture_config or {})

        self.sample_count = int(config.get("sample_count", self.SAMPLE_COUNT))

    def create_session(
        self,
        identity: str,
        frame_source: FrameSource,
        on_progress: Optional[ProgressCallback] = None,
    ) -> CaptureSession:
        """
        Build (but do not start) a verification session.

        The record is read again when the session finishes, so a record
        deleted mid-capture yields NO_ENROLLMENT_RECORD.
        """
        if not identity:
            raise ValueError("identity must be a non-empty string")

        def on_capture(frame: Frame) -> Optional[np.ndarray]:
            return self.extractor.extract(frame)

        def on_complete(descriptors: List[np.ndarray], captured: int) -> CaptureOutcome:
            return self._finalize(identity, descriptors)

        return CaptureSession(
            frame_source=frame_source,
            target_count=self.sample_count,
            on_capture=on_capture,
            on_complete=on_complete,
            config=self.capture_config,
            quality_gate=self.quality_gate,
            on_progress=on_progress,
            name=f"verify:{identity}",
        )

    async def verify(
        self,
        identity: str,
        frame_source: FrameSource,
        on_progress: Optional[ProgressCallback] = None,
        sleep: Optional[SleepFunction] = None,
    ) -> CaptureOutcome:
        """
        Run a full verification and log the attempt.

        Returns:
            CaptureOutcome whose value is the VerificationResult (set for both
            COMPLETED and VERIFICATION_FAILED).
        """
        if not self.store.exists(identity):
            logger.info(f"Verification requested for unknown identity {identity}")
            outcome = self._no_record(identity)
            self._log(identity, outcome)
            return outcome

        session = self.create_session(identity, frame_source, on_progress=on_progress)
        outcome = await session.run(sleep=sleep)
        self._log(identity, outcome)
        return outcome

    def _no_record(self, identity: str) -> CaptureOutcome:
        return CaptureOutcome.failed(
            FailureKind.NO_ENROLLMENT_RECORD,
            message=f"No enrollment record for {identity}",
        )

    def _finalize(self, identity: str, descriptors: List[np.ndarray]) -> CaptureOutcome:
        with self.store.lock(identity):
            record = self.store.get(identity)
            if record is None:
                return self._no_record(identity)

            result = self.vote.vote(self.scorer, descriptors, list(record.descriptors))

            if result.verified:
                self.store.put(identity, record.touched(self.clock.now()))

        if not result.verified:
            logger.info(f"Verification failed for {identity}")
            return CaptureOutcome.failed(
                FailureKind.VERIFICATION_FAILED,
                message="Face did not match the enrolled record",
                details=result.to_details(),
                value=result,
            )

        logger.info(f"Verified {identity} (max={result.max_similarity:.3f})")
        return CaptureOutcome.completed(result)

    def _log(self, identity: str, outcome: CaptureOutcome) -> None:
        details: Dict[str, Any] = {"attempts": outcome.attempts}
        if isinstance(outcome.value, VerificationResult):
            details.update(outcome.value.to_details())
        elif outcome.failure is not None:
            details.update(outcome.failure.details)

        self.store.log_attempt(
            identity,
            "verify",
            outcome.ok,
            failure_kind=outcome.failure_kind.value if outcome.failure_kind else None,
            details=details,
        )


def get_verification_controller(store: Optional[RecordStore] = None) -> VerificationController:
    """Build a VerificationController wired from config.yaml."""
    from core.config import (
        get_capture_config,
        get_descriptor_config,
        get_quality_gate_config,
        get_verification_config,
    )
    from core.record_store import get_record_store

    verification_config = get_verification_config()

    return VerificationController(
        store=store or get_record_store(),
        quality_gate=QualityGate(get_quality_gate_config()),
        extractor=DescriptorExtractor(get_descriptor_config()),
        config=verification_config,
        capture_config=get_capture_config(),
    )
