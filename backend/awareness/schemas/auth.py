from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime

from awareness.models.user import UserRole


class UserResponse(BaseModel):
    id: int
    subject: str
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    display_name: str
    role: UserRole
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class SyncUserResponse(BaseModel):
    success: bool = True
    action: str
    user: UserResponse


class PermissionsResponse(BaseModel):
    role: UserRole
    permissions: List[str]


class RoleUpdateRequest(BaseModel):
    new_role: UserRole
    reason: Optional[str] = Field(None, max_length=500)


class RoleUpdateResponse(BaseModel):
    success: bool
    message: str
    previous_role: UserRole
    new_role: UserRole


class RoleAuditLogResponse(BaseModel):
    id: int
    target_user_id: int
    target_subject: str
    performed_by_id: int
    performed_by_subject: str
    action: str
    previous_role: Optional[str] = None
    new_role: str
    reason: str
    timestamp: datetime

    class Config:
        from_attributes = True


class AuditChainResponse(BaseModel):
    verified: bool
    entries_checked: int
    broken_at: Optional[int] = None
