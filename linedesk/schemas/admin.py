from typing import Optional

from pydantic import BaseModel


class ManualToggleRequest(BaseModel):
    enabled: bool


class ManualToggleResponse(BaseModel):
    success: bool
    global_manual: bool
    changed: bool


class ResetResponse(BaseModel):
    success: bool
    user_id: str
    message: Optional[str] = None


class ReloadResponse(BaseModel):
    success: bool
    entries: int
    version: Optional[str] = None


class SnapshotResponse(BaseModel):
    success: bool
    written: bool
