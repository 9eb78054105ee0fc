import hmac
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException

from linedesk.config import is_valid_user_id
from linedesk.container import ServiceContainer, get_container
from linedesk.logging_config import get_logger
from linedesk.schemas.admin import (
    ManualToggleRequest,
    ManualToggleResponse,
    ReloadResponse,
    ResetResponse,
    SnapshotResponse,
)

logger = get_logger("admin")

router = APIRouter(prefix="/admin", tags=["admin"])


def _require_admin_token(provided: Optional[str], expected: str) -> None:
    if not expected:
        raise HTTPException(status_code=500, detail="ADMIN_TOKEN not configured")
    if not provided or not hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8")):
        raise HTTPException(status_code=401, detail="Invalid admin token")


@router.get("/status")
async def get_status(
    container: ServiceContainer = Depends(get_container),
    x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
):
    _require_admin_token(x_admin_token, container.settings.admin_token)
    return container.admin.status()


@router.post("/manual", response_model=ManualToggleResponse)
async def toggle_manual(
    data: ManualToggleRequest,
    container: ServiceContainer = Depends(get_container),
    x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
) -> ManualToggleResponse:
    _require_admin_token(x_admin_token, container.settings.admin_token)
    changed = container.admin.set_global_manual(data.enabled)
    return ManualToggleResponse(success=True, global_manual=container.gate.global_manual, changed=changed)


@router.post("/users/{user_id}/reset", response_model=ResetResponse)
async def reset_user(
    user_id: str,
    container: ServiceContainer = Depends(get_container),
    x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
) -> ResetResponse:
    _require_admin_token(x_admin_token, container.settings.admin_token)
    if not is_valid_user_id(user_id):
        raise HTTPException(status_code=400, detail="Malformed user id")

    found = await container.admin.reset_user(user_id)
    if not found:
        raise HTTPException(status_code=404, detail=f"User '{user_id}' not found")
    return ResetResponse(success=True, user_id=user_id)


@router.post("/knowledge/reload", response_model=ReloadResponse)
async def reload_knowledge(
    container: ServiceContainer = Depends(get_container),
    x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
) -> ReloadResponse:
    _require_admin_token(x_admin_token, container.settings.admin_token)
    loaded = container.knowledge.load()
    return ReloadResponse(success=loaded, entries=len(container.knowledge.entries), version=container.knowledge.version)


@router.post("/snapshot", response_model=SnapshotResponse)
async def write_snapshot_now(
    container: ServiceContainer = Depends(get_container),
    x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
) -> SnapshotResponse:
    _require_admin_token(x_admin_token, container.settings.admin_token)
    written = await container.persistence.flush(force=True)
    logger.info("Snapshot requested by operator", extra={"context": {"written": written}})
    return SnapshotResponse(success=written, written=written)
