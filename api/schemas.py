"""
Pydantic Schemas for API Request/Response Models

This module defines the data models used by the FaceID HTTP API.

These schemas provide:
- Type validation
- Automatic documentation in OpenAPI/Swagger
- Clear interface contracts
"""

from typing import List, Optional, Dict, Any
from pydantic import BaseModel, Field


# ============================================================
# Capture Schemas
# ============================================================

class FramesRequest(BaseModel):
    """Frames uploaded for an enrollment or verification run."""
    frames: List[str] = Field(
        ...,
        min_length=1,
        description="Base64-encoded JPEG images, played back in order as the camera feed"
    )


class FailureInfo(BaseModel):
    """Why a capture run did not succeed."""
    kind: str = Field(..., description="Failure kind, e.g. 'timeout' or 'verification_failed'")
    message: str = Field("", description="Human-readable explanation")
    details: Dict[str, Any] = Field(default_factory=dict, description="Diagnostics")


class EnrollResponse(BaseModel):
    """Result of an enrollment run."""
    success: bool = Field(..., description="Whether a record was stored")
    identity: str = Field(..., description="Identity the record is stored under")
    state: str = Field(..., description="Terminal session state")
    n_descriptors: int = Field(0, description="Valid descriptors in the stored record")
    captured: int = Field(0, description="Frames captured (including rejected captures)")
    attempts: int = Field(0, description="Scanning polls used")
    failure: Optional[FailureInfo] = Field(None, description="Set when success is false")


class VerifyResponse(BaseModel):
    """Result of a verification run."""
    success: bool = Field(..., description="Whether the identity claim was accepted")
    identity: str = Field(..., description="Claimed identity")
    state: str = Field(..., description="Terminal session state")
    max_similarity: float = Field(0.0, description="Highest pairwise similarity (0-1)")
    average_similarity: float = Field(0.0, description="Mean pairwise similarity (0-1)")
    good_match_count: int = Field(0, description="Comparisons above the similarity threshold")
    required_good_matches: int = Field(0, description="Good matches needed to accept")
    attempts: int = Field(0, description="Scanning polls used")
    failure: Optional[FailureInfo] = Field(None, description="Set when success is false")


# ============================================================
# Record Management Schemas
# ============================================================

class RecordInfo(BaseModel):
    """Enrollment record summary."""
    identity: str = Field(..., description="Identity key")
    created_at: str = Field(..., description="ISO timestamp of enrollment")
    last_used_at: str = Field(..., description="ISO timestamp of the last successful verification")
    n_descriptors: int = Field(..., description="Number of stored descriptors")
    descriptor_length: int = Field(..., description="Length of each descriptor")


class RecordDetailResponse(RecordInfo):
    """Enrollment record with its metadata."""
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Enrollment metadata")


class RecordListResponse(BaseModel):
    """List of enrollment records."""
    records: List[RecordInfo] = Field(..., description="Stored records")
    total: int = Field(..., description="Total number of records")


class DeleteRecordResponse(BaseModel):
    """Response after deleting a record."""
    success: bool = Field(..., description="Whether deletion succeeded")
    identity: str = Field(..., description="Identity of the deleted record")
    message: str = Field(..., description="Status message")


class AttemptLog(BaseModel):
    """One logged enrollment or verification attempt."""
    id: int = Field(..., description="Log entry id")
    identity: str = Field(..., description="Identity the attempt was made for")
    timestamp: str = Field(..., description="When the attempt was logged")
    operation: str = Field(..., description="'enroll' or 'verify'")
    success: bool = Field(..., description="Whether the attempt succeeded")
    failure_kind: Optional[str] = Field(None, description="Failure kind, if any")
    details: Dict[str, Any] = Field(default_factory=dict, description="Scores and counters")


class AttemptLogResponse(BaseModel):
    """Attempt history for an identity."""
    identity: str = Field(..., description="Identity key")
    logs: List[AttemptLog] = Field(..., description="Most recent attempts first")


# ============================================================
# System Schemas
# ============================================================

class HealthResponse(BaseModel):
    """Health check response."""
    status: str = Field(..., description="Overall status: 'healthy' or 'degraded'")
    storage_ready: bool = Field(..., description="Whether the record store is reachable")
    enrolled_identities: int = Field(0, description="Number of stored records")
    total_verifications: int = Field(0, description="Logged verification attempts")
    successful_verifications: int = Field(0, description="Accepted verification attempts")
