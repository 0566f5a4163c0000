"""
Service API: routes callable with a client API key.

Every route authenticates the key and admits the request against the
client's hourly quota before anything else runs. Profile and match routes are
forwarded to the profile-matching service with the caller's identity.
"""
from typing import Any, Dict

import httpx
from fastapi import APIRouter, Body, Depends, Request, Response

from match_gateway_server.auth import ClientIdentity
from match_gateway_server.downstream import ProfileServiceClient
from match_gateway_server.quota import enforce_quota

router = APIRouter(prefix="/api/v1", tags=["service"])


def get_profile_service(request: Request) -> ProfileServiceClient:
    return request.app.state.profile_service


def _relay(request: Request, upstream: httpx.Response) -> Response:
    """Copy the downstream answer and add the quota headers of this request"""
    response = Response(
        content=upstream.content,
        status_code=upstream.status_code,
        media_type=upstream.headers.get("content-type", "application/json"),
    )
    decision = getattr(request.state, "quota", None)
    if decision is not None:
        response.headers["X-RateLimit-Limit"] = str(decision.limit)
        if decision.remaining is not None:
            response.headers["X-RateLimit-Remaining"] = str(decision.remaining)
    return response


@router.get("/whoami")
def whoami(client: ClientIdentity = Depends(enforce_quota)):
    """Identity resolved from the presented API key"""
    return {"success": True, "data": client.to_dict()}


@router.post("/profiles")
async def create_profile(
    request: Request,
    payload: Dict[str, Any] = Body(...),
    client: ClientIdentity = Depends(enforce_quota),
    service: ProfileServiceClient = Depends(get_profile_service),
):
    """Create and enrich a profile from a LinkedIn URL"""
    upstream = await service.forward("POST", "/profiles", client, json=payload)
    return _relay(request, upstream)


@router.get("/profiles")
async def list_profiles(
    request: Request,
    client: ClientIdentity = Depends(enforce_quota),
    service: ProfileServiceClient = Depends(get_profile_service),
):
    upstream = await service.forward("GET", "/profiles", client, params=dict(request.query_params))
    return _relay(request, upstream)


@router.get("/profiles/{profile_id}")
async def get_profile(
    profile_id: str,
    request: Request,
    client: ClientIdentity = Depends(enforce_quota),
    service: ProfileServiceClient = Depends(get_profile_service),
):
    upstream = await service.forward("GET", f"/profiles/{profile_id}", client)
    return _relay(request, upstream)


@router.post("/matches")
async def find_matches(
    request: Request,
    payload: Dict[str, Any] = Body(...),
    client: ClientIdentity = Depends(enforce_quota),
    service: ProfileServiceClient = Depends(get_profile_service),
):
    """Find collaboration matches for a profile"""
    upstream = await service.forward("POST", "/matches", client, json=payload)
    return _relay(request, upstream)


@router.post("/matches/compare")
async def compare_profiles(
    request: Request,
    payload: Dict[str, Any] = Body(...),
    client: ClientIdentity = Depends(enforce_quota),
    service: ProfileServiceClient = Depends(get_profile_service),
):
    upstream = await service.forward("POST", "/matches/compare", client, json=payload)
    return _relay(request, upstream)
