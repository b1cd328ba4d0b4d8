"""
API v1 Router
"""

from fastapi import APIRouter

from . import me, organizations, requests, threads, watches

router = APIRouter()

router.include_router(requests.router, prefix="/requests", tags=["Requests"])
router.include_router(threads.threads_router, prefix="/threads", tags=["Threads"])
router.include_router(threads.messages_router, prefix="/messages", tags=["Messages"])
router.include_router(watches.router, prefix="/watches", tags=["Watches"])
router.include_router(organizations.router, prefix="/organizations", tags=["Organizations"])
router.include_router(me.router, prefix="/me", tags=["Me"])


@router.get("/", tags=["API"])
async def api_root():
    """API root: version and available endpoints."""
    return {
        "api": "v1",
        "version": "0.1.0",
        "endpoints": [
            "/requests",
            "/threads",
            "/messages",
            "/watches",
            "/organizations/{orgId}/trusts",
            "/me",
        ],
    }
