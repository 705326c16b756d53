"""
Verification API Routes

This module provides:
- POST /verify/{identity}: verify an identity claim from uploaded frames

Uploaded frames are replayed through a verification capture session and the
resulting probe descriptors are voted against the stored record.
"""

import logging

from fastapi import APIRouter, HTTPException

from api.routes.common import failure_info, frames_to_source, identity_lock, replay_sleep
from api.schemas import FramesRequest, VerifyResponse
from core.capture_session import FailureKind
from core.record_store import get_record_store
from core.verification import VerificationResult, get_verification_controller

# Setup logging
logger = logging.getLogger(__name__)

# Create router
router = APIRouter(tags=["verification"])


@router.post("/verify/{identity}", response_model=VerifyResponse)
async def verify(identity: str, request: FramesRequest):
    """
    Verify that the frames show the enrolled identity.

    Returns:
        VerifyResponse with the voting scores. A rejected claim is a normal
        response with success=false and failure.kind='verification_failed'.

    Raises:
        400: If a frame cannot be decoded or too many frames were sent.
        404: If the identity has no enrollment record.
    """
    source = frames_to_source(request.frames)
    logger.info(f"Verification request: identity={identity}, frames={len(request.frames)}")

    controller = get_verification_controller(get_record_store())

    async with identity_lock(identity):
        outcome = await controller.verify(identity, source, sleep=replay_sleep)

    if outcome.failure_kind is FailureKind.NO_ENROLLMENT_RECORD:
        raise HTTPException(status_code=404, detail=f"No enrollment record for {identity}")

    result = outcome.value if isinstance(outcome.value, VerificationResult) else None

    return VerifyResponse(
        success=outcome.ok,
        identity=identity,
        state=outcome.state.value,
        max_similarity=result.max_similarity if result else 0.0,
        average_similarity=result.average_similarity if result else 0.0,
        good_match_count=result.good_match_count if result else 0,
        required_good_matches=result.required_good_matches if result else 0,
        attempts=outcome.attempts,
        failure=failure_info(outcome),
    )
