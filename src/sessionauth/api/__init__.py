"""
API modules for sessionauth.

This package contains the authentication routes and their dependencies.
"""

from __future__ import annotations

from fastapi import APIRouter

from . import auth

# Create main API router
router = APIRouter(prefix="/api")
router.include_router(auth.router)

__all__ = ["router"]
