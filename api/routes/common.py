"""
Helpers shared by the capture routes.

- decode_frame: base64 JPEG -> Frame
- frames_to_source: uploaded frames -> SequenceFrameSource
- identity_lock: serialize enroll/verify calls for the same identity
- replay_sleep: zero-delay sleep used when replaying uploads
"""

import asyncio
import base64
import binascii
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, List, Optional

import cv2
import numpy as np
from fastapi import HTTPException

from api.schemas import FailureInfo
from core.capture_session import CaptureOutcome
from core.config import get_api_config
from core.frame import Frame, SequenceFrameSource

logger = logging.getLogger(__name__)

_identity_locks: Dict[str, asyncio.Lock] = {}
_lock_users: Dict[str, int] = {}


def decode_frame(frame_b64: str) -> Optional[Frame]:
    """
    Decode a base64-encoded JPEG image into a Frame.

    Args:
        frame_b64: Base64-encoded JPEG string.

    Returns:
        Frame (RGB) or None if decoding fails.
    """
    try:
        img_bytes = base64.b64decode(frame_b64)
        np_arr = np.frombuffer(img_bytes, np.uint8)
        image = cv2.imdecode(np_arr, cv2.IMREAD_COLOR)
    except (binascii.Error, ValueError, cv2.error) as e:
        logger.warning(f"Failed to decode frame: {e}")
        return None

    if image is None:
        return None
    return Frame.from_bgr(image)


def frames_to_source(frames_b64: List[str]) -> SequenceFrameSource:
    """
    Decode uploaded frames and wrap them in a frame source.

    Each frame is served `frame_hold` times so that one upload can serve
    both the scanning poll and the capture that follows it.

    Raises:
        HTTPException 400: Too many frames, or a frame could not be decoded.
    """
    api_config = get_api_config()
    max_frames = int(api_config.get("max_frames", 40))
    hold = int(api_config.get("frame_hold", 2))

    if len(frames_b64) > max_frames:
        raise HTTPException(
            status_code=400,
            detail=f"Too many frames: {len(frames_b64)} (max {max_frames})"
        )

    frames = []
    for i, frame_b64 in enumerate(frames_b64):
        frame = decode_frame(frame_b64)
        if frame is None:
            raise HTTPException(status_code=400, detail=f"Failed to decode frame {i}")
        frames.append(frame)

    return SequenceFrameSource(frames, hold=hold)


@asynccontextmanager
async def identity_lock(identity: str) -> AsyncIterator[None]:
    """
    Hold the per-identity asyncio lock for the duration of a request.

    The lock is dropped from the registry once no request holds or waits on
    it, so unknown identities do not accumulate.
    """
    lock = _identity_locks.setdefault(identity, asyncio.Lock())
    _lock_users[identity] = _lock_users.get(identity, 0) + 1
    try:
        async with lock:
            yield
    finally:
        _lock_users[identity] -= 1
        if _lock_users[identity] == 0:
            del _lock_users[identity]
            del _identity_locks[identity]


async def replay_sleep(_seconds: float) -> None:
    """Uploaded frames are replayed as fast as possible; just yield control."""
    await asyncio.sleep(0)


def failure_info(outcome: CaptureOutcome) -> Optional[FailureInfo]:
    if outcome.failure is None:
        return None
    return FailureInfo(
        kind=outcome.failure.kind.value,
        message=outcome.failure.message,
        details=outcome.failure.details,
    )
