"""
Core Module for the FaceID Capture Engine

This package contains the core functionality for frame quality gating,
descriptor extraction, capture sessions, and enrollment record storage.

Main components:
    - config: Configuration loading and management
    - frame / clock: Frame container, frame sources and time sources
    - quality_gate: Heuristic face-presence and exposure checks
    - descriptor_extractor: Fixed-length region descriptors
    - capture_session: Bounded-retry, cancellable capture state machine
    - record_store: Enrollment record persistence (in-memory and SQLite)
    - enrollment / verification: Controllers built on capture sessions
    - matching: Similarity scoring and multi-sample voting

Usage:
    from core.config import get_config
    from core.enrollment import get_enrollment_controller
    from core.verification import get_verification_controller
"""

from core.config import (
    get_config,
    get_section,
    get_quality_gate_config,
    get_capture_quality_config,
    get_descriptor_config,
    get_enrollment_config,
    get_verification_config,
    get_capture_config,
    get_storage_config,
    get_api_config,
    get_server_config,
)

from core.frame import Frame, FrameSource, SequenceFrameSource
from core.clock import Clock, SystemClock, FixedClock

from core.quality_gate import (
    QualityGate,
    QualityReport,
    RejectionReason,
    CaptureQualityCheck,
)

from core.descriptor_extractor import DescriptorExtractor, DESCRIPTOR_LENGTH

from core.capture_session import (
    CaptureSession,
    CaptureState,
    CaptureOutcome,
    CaptureFailure,
    CaptureProgress,
    FailureKind,
)

from core.record_store import (
    RecordStore,
    EnrollmentRecord,
    InMemoryRecordStore,
    SQLiteRecordStore,
    get_record_store,
)

from core.enrollment import EnrollmentController, get_enrollment_controller
from core.verification import (
    VerificationController,
    VerificationResult,
    get_verification_controller,
)

__all__ = [
    # Configuration
    "get_config",
    "get_section",
    "get_quality_gate_config",
    "get_capture_quality_config",
    "get_descriptor_config",
    "get_enrollment_config",
    "get_verification_config",
    "get_capture_config",
    "get_storage_config",
    "get_api_config",
    "get_server_config",
    # Frames and time
    "Frame",
    "FrameSource",
    "SequenceFrameSource",
    "Clock",
    "SystemClock",
    "FixedClock",
    # Quality gate
    "QualityGate",
    "QualityReport",
    "RejectionReason",
    "CaptureQualityCheck",
    # Descriptors
    "DescriptorExtractor",
    "DESCRIPTOR_LENGTH",
    # Capture sessions
    "CaptureSession",
    "CaptureState",
    "CaptureOutcome",
    "CaptureFailure",
    "CaptureProgress",
    "FailureKind",
    # Record store
    "RecordStore",
    "EnrollmentRecord",
    "InMemoryRecordStore",
    "SQLiteRecordStore",
    "get_record_store",
    # Controllers
    "EnrollmentController",
    "get_enrollment_controller",
    "VerificationController",
    "VerificationResult",
    "get_verification_controller",
]
