"""
API Layer for the FaceID Capture Engine

This package provides the FastAPI-based API layer that exposes:
- REST endpoints for enrollment and verification from uploaded frames
- REST endpoints for enrollment record management and health checks
"""
