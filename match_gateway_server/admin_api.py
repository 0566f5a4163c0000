"""
Administrative API for managing client API keys.

All routes require the X-Admin-Password header. Keys are shown in full only in
the create and regenerate responses; every other view carries ``keyPreview``.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status

from match_gateway_server.auth import require_admin
from match_gateway_server.key_manager import IssuedKey, KeyLifecycleManager
from match_gateway_server.models import CreateKeyRequest, IssuedKeyData, KeySummary, UpdateKeyRequest

router = APIRouter(prefix="/api/admin", tags=["admin"], dependencies=[Depends(require_admin)])


def get_key_manager(request: Request) -> KeyLifecycleManager:
    return request.app.state.key_manager


def _issued_payload(issued: IssuedKey) -> dict:
    record = issued.record
    return IssuedKeyData(
        api_key=issued.api_key,
        client_id=record.client_id,
        name=record.name,
        rate_limit=record.rate_limit,
        expires_at=record.expires_at,
        created_at=record.created_at,
    ).to_dict()


@router.get("/stats")
def get_stats(manager: KeyLifecycleManager = Depends(get_key_manager)):
    """Key counts and the ten most used active clients"""
    stats = manager.stats(top=10)
    return {
        "success": True,
        "data": {
            "apiKeys": {
                "total": stats["total"],
                "active": stats["active"],
                "inactive": stats["inactive"],
            },
            "topClients": [
                {
                    "name": record.name,
                    "clientId": record.client_id,
                    "usageCount": record.usage_count,
                    "lastUsed": record.last_used.isoformat() if record.last_used else None,
                }
                for record in stats["top_clients"]
            ],
        },
    }


@router.post("/keys", status_code=status.HTTP_201_CREATED)
def create_api_key(body: CreateKeyRequest, manager: KeyLifecycleManager = Depends(get_key_manager)):
    """
    Create a new API key.
    The key is returned in this response only.
    """
    issued = manager.create(
        name=body.name,
        client_id=body.client_id,
        rate_limit=body.rate_limit,
        expires_in_days=body.expires_in_days,
        allowed_ips=body.allowed_ips,
        contact_email=body.contact_email,
        notes=body.notes,
    )
    return {
        "success": True,
        "message": "API key created successfully",
        "data": _issued_payload(issued),
        "warning": "Save this API key securely. It will not be shown again.",
    }


@router.get("/keys")
def list_api_keys(
    active: Optional[bool] = Query(None, description="Filter by active state"),
    search: Optional[str] = Query(None, max_length=200, description="Match name or client id"),
    manager: KeyLifecycleManager = Depends(get_key_manager),
):
    records = manager.list_keys(active=active, search=search)
    return {
        "success": True,
        "count": len(records),
        "data": [KeySummary.from_record(record).to_dict() for record in records],
    }


@router.get("/keys/{client_id}")
def get_api_key(client_id: str, manager: KeyLifecycleManager = Depends(get_key_manager)):
    record = manager.get(client_id)
    return {"success": True, "data": KeySummary.from_record(record).to_dict()}


@router.put("/keys/{client_id}")
def update_api_key(
    client_id: str,
    body: UpdateKeyRequest,
    manager: KeyLifecycleManager = Depends(get_key_manager),
):
    """Update name, isActive, rateLimit, expiresAt, allowedIPs, contactEmail or notes"""
    record = manager.update(client_id, body.to_fields())
    return {
        "success": True,
        "message": "API key updated successfully",
        "data": KeySummary.from_record(record).to_dict(),
    }


@router.delete("/keys/{client_id}")
def delete_api_key(
    client_id: str,
    hard_delete: bool = Query(False, alias="hardDelete"),
    manager: KeyLifecycleManager = Depends(get_key_manager),
):
    """Deactivate a key, or remove it permanently with ?hardDelete=true"""
    manager.revoke(client_id, hard=hard_delete)
    return {
        "success": True,
        "message": "API key deleted permanently" if hard_delete else "API key deactivated",
    }


@router.post("/keys/{client_id}/regenerate")
def regenerate_api_key(client_id: str, manager: KeyLifecycleManager = Depends(get_key_manager)):
    """Issue a new key; the previous one stops working immediately"""
    issued = manager.regenerate(client_id)
    return {
        "success": True,
        "message": "API key regenerated successfully",
        "data": _issued_payload(issued),
        "warning": "Save this API key securely. The old key is now invalid.",
    }
