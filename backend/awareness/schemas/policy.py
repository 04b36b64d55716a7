from pydantic import BaseModel, Field
from datetime import datetime
from typing import List, Optional

from awareness.models.training import ContentStatus


class PolicyBase(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    content: str = Field(..., min_length=1)
    summary: str = ""
    category: str = Field("general_security", min_length=1, max_length=100)
    version: str = Field("1.0", min_length=1, max_length=20)
    effective_date: Optional[datetime] = None
    expiry_date: Optional[datetime] = None
    requires_acknowledgment: bool = True
    acknowledgment_deadline: Optional[datetime] = None
    tags: List[str] = []


class PolicyCreate(PolicyBase):
    pass


class PolicyUpdate(PolicyBase):
    pass


class PolicyResponse(PolicyBase):
    id: int
    status: ContentStatus
    created_by: str
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class AcknowledgePolicyRequest(BaseModel):
    method: str = Field("digital_signature", min_length=1, max_length=50)
    notes: Optional[str] = Field(None, max_length=500)


class PolicyAcknowledgmentResponse(BaseModel):
    id: int
    policy_id: int
    user_id: int
    acknowledged_version: str
    acknowledged_at: datetime
    method: str
    notes: Optional[str] = None

    class Config:
        from_attributes = True
