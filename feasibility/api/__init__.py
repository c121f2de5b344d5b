"""
API routes for the feasibility engine.
"""

from fastapi import APIRouter

from feasibility.api import calculations

router = APIRouter()

router.include_router(calculations.router, prefix="/calculate", tags=["calculations"])
