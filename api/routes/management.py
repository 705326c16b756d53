"""
Record Management API Routes

This module provides REST endpoints for managing enrollment records:
- GET /records: List all records
- GET /records/{identity}: Get record details
- GET /records/{identity}/logs: Enrollment/verification attempt history
- DELETE /records/{identity}: Delete a record
"""

from fastapi import APIRouter, HTTPException, Query

from api.routes.common import identity_lock
from api.schemas import (
    AttemptLog,
    AttemptLogResponse,
    DeleteRecordResponse,
    RecordDetailResponse,
    RecordInfo,
    RecordListResponse,
)
from core.record_store import get_record_store

# Create router
router = APIRouter(tags=["records"])


@router.get("/records", response_model=RecordListResponse)
async def list_records():
    """
    List all enrollment records.

    Returns summary information for each record: identity, timestamps and
    descriptor counts. Descriptors themselves are never returned.
    """
    store = get_record_store()
    records = store.list_records()

    return RecordListResponse(
        records=[RecordInfo(**r) for r in records],
        total=len(records),
    )


@router.get("/records/{identity}", response_model=RecordDetailResponse)
async def get_record(identity: str):
    """
    Get details about a specific record.

    Raises:
        404: If the identity has no record.
    """
    store = get_record_store()
    record = store.get(identity)

    if record is None:
        raise HTTPException(status_code=404, detail=f"No enrollment record for {identity}")

    return RecordDetailResponse(
        identity=record.identity,
        created_at=record.created_at.isoformat(),
        last_used_at=record.last_used_at.isoformat(),
        n_descriptors=record.n_descriptors,
        descriptor_length=record.descriptor_length,
        metadata=record.metadata,
    )


@router.get("/records/{identity}/logs", response_model=AttemptLogResponse)
async def get_record_logs(identity: str, limit: int = Query(20, ge=1, le=1000)):
    """Most recent enrollment and verification attempts for an identity."""
    store = get_record_store()
    logs = store.get_attempt_logs(identity=identity, limit=limit)

    return AttemptLogResponse(
        identity=identity,
        logs=[AttemptLog(**log) for log in logs],
    )


@router.delete("/records/{identity}", response_model=DeleteRecordResponse)
async def delete_record(identity: str):
    """
    Delete an enrollment record.

    This permanently removes the identity's descriptors. The attempt log is kept.

    Raises:
        404: If the identity has no record.
    """
    store = get_record_store()

    async with identity_lock(identity):
        if not store.exists(identity):
            raise HTTPException(status_code=404, detail=f"No enrollment record for {identity}")

        success = store.delete(identity)

    return DeleteRecordResponse(
        success=success,
        identity=identity,
        message=f"Record for {identity} deleted successfully" if success else "Deletion failed",
    )
