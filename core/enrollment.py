"""
Enrollment Controller

Builds an enrollment record for an identity from several captured frames.

Enrollment flow:
    1. A CaptureSession polls the frame source until the quality gate
       accepts a frame, counts down, then captures a fresh frame.
    2. Each captured frame must also pass the CaptureQualityCheck; frames
       that fail it still count as captures but produce no descriptor.
    3. After `sample_count` captures, at least ceil(sample_count * 0.6)
       valid descriptors are required. The record is then stored, replacing
       any previous record of the identity.

Usage:
    from core.enrollment import get_enrollment_controller

    controller = get_enrollment_controller()
    outcome = await controller.enroll("alice", frame_source)
    if outcome.ok:
        record = outcome.value
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
from core.matching.voting import required_count
from core.quality_gate import CaptureQualityCheck, QualityGate
from core.record_store import EnrollmentRecord, RecordStore

logger = logging.getLogger(__name__)


class EnrollmentController:
    """
    Runs enrollment sessions and persists the resulting records.

    Attributes:
        sample_count: Captures taken per enrollment.
        min_valid_fraction: Share of captures that must yield a descriptor.
    """

    SAMPLE_COUNT = 5
    MIN_VALID_FRACTION = 0.6

    def __init__(
        self,
        store: RecordStore,
        clock: Optional[Clock] = None,
        quality_gate: Optional[QualityGate] = None,
        extractor: Optional[DescriptorExtractor] = None,
        capture_check: Optional[CaptureQualityCheck] = None,
        config: Optional[Dict[str, Any]] = None,
        capture_config: Optional[Dict[str, Any]] = None,
    ):
        """
        Args:
            store: Where records are written.
            clock: Time source for record timestamps.
            quality_gate: Gate used while scanning.
            extractor: Turns captured frames into descriptors.
            capture_check: Secondary check applied to each captured frame.
            config: `enrollment` section (sample_count, min_valid_fraction).
            capture_config: `capture` section passed to every session.
        """
        if config is None:
            config = {}
        self.store = store
        self.clock = clock or SystemClock()
        self.quality_gate = quality_gate or QualityGate()
        self.extractor = extractor or DescriptorExtractor()
        self.capture_check = capture_check or CaptureQualityCheck()
        self.capture_config = dict(capture_config or {})

        self.sample_count = int(config.get("sample_count", self.SAMPLE_COUNT))
        self.min_valid_fraction = float(config.get("min_valid_fraction", self.MIN_VALID_FRACTION))

    @property
    def min_valid_samples(self) -> int:
        return required_count(self.sample_count, self.min_valid_fraction)

    def create_session(
        self,
        identity: str,
        frame_source: FrameSource,
        on_progress: Optional[ProgressCallback] = None,
    ) -> CaptureSession:
        """
        Build (but do not start) an enrollment session for an identity.

        Raises:
            ValueError: If identity is empty.
        """
        if not identity:
            raise ValueError("identity must be a non-empty string")

        def on_capture(frame: Frame) -> Optional[np.ndarray]:
            quality = self.capture_check.check(frame)
            if not quality.passed:
                return None
            return self.extractor.extract(frame)

        def on_complete(descriptors: List[np.ndarray], captured: int) -> CaptureOutcome:
            return self._finalize(identity, descriptors, captured)

        return CaptureSession(
            frame_source=frame_source,
            target_count=self.sample_count,
            on_capture=on_capture,
            on_complete=on_complete,
            config=self.capture_config,
            quality_gate=self.quality_gate,
            on_progress=on_progress,
            name=f"enroll:{identity}",
        )

    async def enroll(
        self,
        identity: str,
        frame_source: FrameSource,
        on_progress: Optional[ProgressCallback] = None,
        sleep: Optional[SleepFunction] = None,
    ) -> CaptureOutcome:
        """
        Run a full enrollment and log the attempt.

        Returns:
            CaptureOutcome whose value is the stored EnrollmentRecord on success.
        """
        session = self.create_session(identity, frame_source, on_progress=on_progress)
        outcome = await session.run(sleep=sleep)

        details: Dict[str, Any] = {
            "captured": outcome.captured,
            "valid": len(session.descriptors),
            "attempts": outcome.attempts,
        }
        if outcome.failure is not None:
            details.update(outcome.failure.details)

        self.store.log_attempt(
            identity,
            "enroll",
            outcome.ok,
            failure_kind=outcome.failure_kind.value if outcome.failure_kind else None,
            details=details,
        )
        return outcome

    def _finalize(self, identity: str, descriptors: List[np.ndarray], captured: int) -> CaptureOutcome:
        required = required_count(captured, self.min_valid_fraction)

        if len(descriptors) < required:
            logger.warning(
                f"Enrollment for {identity} failed: {len(descriptors)} valid samples, "
                f"{required} required"
            )
            return CaptureOutcome.failed(
                FailureKind.INSUFFICIENT_VALID_SAMPLES,
                message="Not enough good quality samples, please try again",
                details={"valid": len(descriptors), "required": required, "captured": captured},
            )

        now = self.clock.now()
        record = EnrollmentRecord(
            identity=identity,
            descriptors=np.stack(descriptors),
            created_at=now,
            last_used_at=now,
            metadata={
                "captured": captured,
                "valid": len(descriptors),
                "rejected": captured - len(descriptors),
            },
        )

        with self.store.lock(identity):
            self.store.put(identity, record)

        logger.info(f"Enrolled {identity} with {record.n_descriptors}/{captured} samples")
        return CaptureOutcome.completed(record)


def get_enrollment_controller(store: Optional[RecordStore] = None) -> EnrollmentController:
    """Build an EnrollmentController wired from config.yaml."""
    from core.config import (
        get_capture_config,
        get_capture_quality_config,
        get_descriptor_config,
        get_enrollment_config,
        get_quality_gate_config,
    )
    from core.record_store import get_record_store

    return EnrollmentController(
        store=store or get_record_store(),
        quality_gate=QualityGate(get_quality_gate_config()),
        extractor=DescriptorExtractor(get_descriptor_config()),
        capture_check=CaptureQualityCheck(get_capture_quality_config()),
        config=get_enrollment_config(),
        capture_config=get_capture_config(),
    )
