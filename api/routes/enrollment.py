"""
Enrollment API Routes

This module provides:
- POST /enroll/{identity}: enroll an identity from uploaded frames

The uploaded frames stand in for the camera feed: they are played back in
order through a capture session, so the same quality gate, countdown and
secondary checks apply as for a live enrollment. Enrolling an identity that
already has a record replaces it.
"""

import logging

from fastapi import APIRouter

from api.routes.common import failure_info, frames_to_source, identity_lock, replay_sleep
from api.schemas import EnrollResponse, FramesRequest
from core.enrollment import get_enrollment_controller
from core.record_store import get_record_store

# Setup logging
logger = logging.getLogger(__name__)

# Create router
router = APIRouter(tags=["enrollment"])


@router.post("/enroll/{identity}", response_model=EnrollResponse)
async def enroll(identity: str, request: FramesRequest):
    """
    Enroll an identity from a sequence of frames.

    This endpoint:
    1. Decodes base64 JPEG frames
    2. Replays them through an enrollment capture session
    3. Stores the record if enough captures passed the quality checks

    Returns:
        EnrollResponse. success=false carries the failure kind
        (insufficient_valid_samples, timeout, ...).

    Raises:
        400: If a frame cannot be decoded or too many frames were sent.
    """
    source = frames_to_source(request.frames)
    logger.info(f"Enrollment request: identity={identity}, frames={len(request.frames)}")

    controller = get_enrollment_controller(get_record_store())

    async with identity_lock(identity):
        outcome = await controller.enroll(identity, source, sleep=replay_sleep)

    record = outcome.value if outcome.ok else None

    return EnrollResponse(
        success=outcome.ok,
        identity=identity,
        state=outcome.state.value,
        n_descriptors=record.n_descriptors if record is not None else 0,
        captured=outcome.captured,
        attempts=outcome.attempts,
        failure=failure_info(outcome),
    )
