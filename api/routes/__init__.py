"""
API Routes Package

This package contains route handlers organized by feature:
- enrollment.py: POST /enroll/{identity}
- verification.py: POST /verify/{identity}
- management.py: REST endpoints for enrollment records
- common.py: frame decoding and per-identity locking shared by the above
"""

from api.routes.enrollment import router as enrollment_router
from api.routes.verification import router as verification_router
from api.routes.management import router as management_router

__all__ = [
    "enrollment_router",
    "verification_router",
    "management_router",
]
