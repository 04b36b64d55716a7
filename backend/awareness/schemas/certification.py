from pydantic import BaseModel, Field, validator
from datetime import datetime
from typing import Any, Dict, List, Optional

from awareness.models.certification import Certification, EffectiveStatus, OverallScoreScope, effective_status


class CertificationTemplateCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: str = Field("", max_length=5000)
    category: str = Field(..., min_length=1, max_length=100)
    certificate_type: str = Field("completion", min_length=1, max_length=50)
    required_modules: List[int] = []
    required_quizzes: List[int] = []
    minimum_overall_score: Optional[int] = Field(None, ge=0, le=100)
    overall_score_scope: Optional[OverallScoreScope] = None
    validity_period: Optional[int] = Field(None, ge=1, description="Days")
    compliance_framework: List[str] = []
    credits_awarded: Optional[int] = Field(None, ge=0)
    auto_award: bool = False

    @validator("required_modules", "required_quizzes")
    def dedupe_ids(cls, v):
        return list(dict.fromkeys(v))


class CertificationTemplateResponse(BaseModel):
    id: int
    title: str
    description: str
    category: str
    certificate_type: str
    required_modules: List[int]
    required_quizzes: List[int]
    minimum_overall_score: Optional[int] = None
    overall_score_scope: Optional[OverallScoreScope] = None
    validity_period: Optional[int] = None
    compliance_framework: List[str]
    credits_awarded: Optional[int] = None
    is_active: bool
    auto_award: bool
    created_by: str
    created_at: datetime

    class Config:
        from_attributes = True


class TemplateActiveUpdate(BaseModel):
    is_active: bool


class AwardCertificationRequest(BaseModel):
    user_id: int
    template_id: int
    issued_by: Optional[str] = Field(None, max_length=255)
    notes: Optional[str] = Field(None, max_length=1000)


class AutoAwardRequest(BaseModel):
    user_id: Optional[int] = None


class RevokeCertificationRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=1000)


class RenewCertificationRequest(BaseModel):
    validity_period: Optional[int] = Field(None, ge=1, description="Days")


class EligibilityResponse(BaseModel):
    eligible: bool
    module_requirements_met: bool
    quiz_requirements_met: bool
    overall_score_met: bool
    overall_score: float
    overall_score_scope: str
    completed_modules: int
    total_modules: int
    completed_quizzes: int
    total_quizzes: int
    missing_modules: List[int]
    missing_quizzes: List[int]


class AwardedCertification(BaseModel):
    id: int
    certificate_id: str
    title: str
    category: str


class CertificationResponse(BaseModel):
    id: int
    user_id: int
    template_id: Optional[int] = None
    title: str
    description: str
    category: str
    certificate_type: str
    required_modules: List[int]
    required_quizzes: List[int]
    minimum_overall_score: Optional[int] = None
    compliance_framework: List[str]
    credits_earned: Optional[int] = None
    issued_at: datetime
    expires_at: Optional[datetime] = None
    renewal_notification_sent: bool
    status: EffectiveStatus
    certificate_id: str
    verification_code: str
    issued_by: str
    metadata: Dict[str, Any]

    @classmethod
    def from_certification(cls, cert: Certification, now: Optional[datetime] = None) -> "CertificationResponse":
        return cls(
            id=cert.id,
            user_id=cert.user_id,
            template_id=cert.template_id,
            title=cert.title,
            description=cert.description,
            category=cert.category,
            certificate_type=cert.certificate_type,
            required_modules=cert.required_modules or [],
            required_quizzes=cert.required_quizzes or [],
            minimum_overall_score=cert.minimum_overall_score,
            compliance_framework=cert.compliance_framework or [],
            credits_earned=cert.credits_earned,
            issued_at=cert.issued_at,
            expires_at=cert.expires_at,
            renewal_notification_sent=cert.renewal_notification_sent,
            status=effective_status(cert, now),
            certificate_id=cert.certificate_id,
            verification_code=cert.verification_code,
            issued_by=cert.issued_by,
            metadata=cert.award_metadata or {},
        )


class CertificateVerification(BaseModel):
    """Public projection; never includes the holder's user record."""
    certificate_id: str
    title: str
    issued_at: datetime
    expires_at: Optional[datetime] = None
    status: EffectiveStatus
    issued_by: str


class CertificationStats(BaseModel):
    total_certifications: int
    active_certifications: int
    expired_certifications: int
    revoked_certifications: int
    expiring_soon: int
    certificate_templates: int
    active_templates: int
    auto_award_templates: int
