"""UCP discovery and health endpoints."""
from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import List

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import Field

from ... import __version__
from ...discovery import AgentProfile
from ..dependencies import GatewayContainer, get_container
from ..schemas import WireModel

router = APIRouter(tags=["discovery"])
health_router = APIRouter(prefix="/health", tags=["health"])

_STARTED_AT = time.monotonic()


class AgentProfileBody(WireModel):
    capabilities: List[str] = Field(default_factory=list)
    handlers: List[str] = Field(default_factory=list)
    extensions: List[str] = Field(default_factory=list)


class NegotiateRequest(WireModel):
    agent_profile: AgentProfileBody = Field(..., alias="agentProfile")


@router.get("/.well-known/ucp")
async def ucp_profile(container: GatewayContainer = Depends(get_container)):
    profile = await container.discovery.get_profile()
    max_age = container.discovery.cache_ttl_seconds
    return JSONResponse(content=profile, headers={"Cache-Control": f"public, max-age={max_age}"})


@router.post("/.well-known/ucp/negotiate")
async def negotiate(request: NegotiateRequest, container: GatewayContainer = Depends(get_container)):
    """Intersect the agent's declared capabilities and handlers with this business profile."""
    body = request.agent_profile
    result = await container.discovery.negotiate(
        AgentProfile(capabilities=body.capabilities, handlers=body.handlers, extensions=body.extensions)
    )
    return JSONResponse(content=result.to_dict(), headers={"Cache-Control": "no-store"})


@router.post("/.well-known/ucp/invalidate-cache")
async def invalidate_profile_cache(container: GatewayContainer = Depends(get_container)):
    await container.discovery.invalidate_cache()
    return {"success": True, "message": "Profile cache invalidated"}


@health_router.get("")
async def health(container: GatewayContainer = Depends(get_container)):
    store_ok = await container.store.ping()
    body = {
        "status": "healthy" if store_ok else "unhealthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": __version__,
        "uptime": round(time.monotonic() - _STARTED_AT, 3),
        "checks": {"store": "ok" if store_ok else "error"},
    }
    return JSONResponse(content=body, status_code=200 if store_ok else 503)


@health_router.get("/live")
async def live():
    return {"live": True}


@health_router.get("/ready")
async def ready(container: GatewayContainer = Depends(get_container)):
    store_ok = await container.store.ping()
    return JSONResponse(content={"ready": store_ok}, status_code=200 if store_ok else 503)
