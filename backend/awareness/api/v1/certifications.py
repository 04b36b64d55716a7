"""
Certification templates, eligibility, issuance and public verification.
"""
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional

from awareness.api.deps import get_caller_identity
from awareness.core.database import get_db
from awareness.core.exceptions import NotFound
from awareness.core.security import CallerIdentity
from awareness.schemas.certification import (
    AutoAwardRequest,
    AwardCertificationRequest,
    AwardedCertification,
    CertificateVerification,
    CertificationResponse,
    CertificationStats,
    CertificationTemplateCreate,
    CertificationTemplateResponse,
    EligibilityResponse,
    RenewCertificationRequest,
    RevokeCertificationRequest,
    TemplateActiveUpdate,
)
from awareness.security.access_control import get_current_user
from awareness.services.certification_service import certification_service
from awareness.services.eligibility import check_eligibility

router = APIRouter()


# Templates

@router.get("/templates", response_model=List[CertificationTemplateResponse])
async def list_active_templates(db: AsyncSession = Depends(get_db)):
    return await certification_service.list_active_templates(db)


@router.get("/templates/all", response_model=List[CertificationTemplateResponse])
async def list_all_templates(
    db: AsyncSession = Depends(get_db),
    identity: Optional[CallerIdentity] = Depends(get_caller_identity),
):
    return await certification_service.list_all_templates(db, identity)


@router.post("/templates", response_model=CertificationTemplateResponse, status_code=status.HTTP_201_CREATED)
async def create_template(
    template: CertificationTemplateCreate,
    db: AsyncSession = Depends(get_db),
    identity: Optional[CallerIdentity] = Depends(get_caller_identity),
):
    return await certification_service.create_template(db, identity, template)


@router.put("/templates/{template_id}/active", response_model=CertificationTemplateResponse)
async def set_template_active(
    template_id: int,
    update: TemplateActiveUpdate,
    db: AsyncSession = Depends(get_db),
    identity: Optional[CallerIdentity] = Depends(get_caller_identity),
):
    return await certification_service.set_template_active(db, identity, template_id, update.is_active)


@router.get("/templates/{template_id}/eligibility", response_model=EligibilityResponse)
async def get_eligibility(
    template_id: int,
    user_id: Optional[int] = None,
    db: AsyncSession = Depends(get_db),
    identity: Optional[CallerIdentity] = Depends(get_caller_identity),
):
    """Eligibility of the caller, or of ``user_id`` for result viewers."""
    if user_id is None:
        user_id = (await get_current_user(db, identity)).id
    result = await check_eligibility(db, identity, user_id, template_id)
    return result.to_dict()


# Issuance and lifecycle

@router.post("/award", response_model=CertificationResponse, status_code=status.HTTP_201_CREATED)
async def award_certification(
    request: AwardCertificationRequest,
    db: AsyncSession = Depends(get_db),
    identity: Optional[CallerIdentity] = Depends(get_caller_identity),
):
    cert = await certification_service.award_certification(
        db,
        identity,
        request.user_id,
        request.template_id,
        issued_by=request.issued_by,
        notes=request.notes,
    )
    return CertificationResponse.from_certification(cert)


@router.post("/auto-award", response_model=List[AwardedCertification])
async def check_and_award_eligible(
    request: Optional[AutoAwardRequest] = None,
    db: AsyncSession = Depends(get_db),
    identity: Optional[CallerIdentity] = Depends(get_caller_identity),
):
    """Award every auto-award certificate the user now qualifies for."""
    user_id = request.user_id if request is not None else None
    awarded = await certification_service.check_and_award_eligible(db, identity, user_id)
    return [
        AwardedCertification(id=cert.id, certificate_id=cert.certificate_id, title=cert.title, category=cert.category)
        for cert in awarded
    ]


@router.post("/{certification_id}/revoke", response_model=CertificationResponse)
async def revoke_certification(
    certification_id: int,
    request: RevokeCertificationRequest,
    db: AsyncSession = Depends(get_db),
    identity: Optional[CallerIdentity] = Depends(get_caller_identity),
):
    cert = await certification_service.revoke_certification(db, identity, certification_id, request.reason)
    return CertificationResponse.from_certification(cert)


@router.post("/{certification_id}/renew", response_model=CertificationResponse)
async def renew_certification(
    certification_id: int,
    request: Optional[RenewCertificationRequest] = None,
    db: AsyncSession = Depends(get_db),
    identity: Optional[CallerIdentity] = Depends(get_caller_identity),
):
    validity_period = request.validity_period if request is not None else None
    cert = await certification_service.renew_certification(db, identity, certification_id, validity_period)
    return CertificationResponse.from_certification(cert)


# Reads

@router.get("/verify/{verification_code}", response_model=CertificateVerification)
async def verify_certificate(verification_code: str, db: AsyncSession = Depends(get_db)):
    """Public lookup; revoked certificates report their status instead of 404."""
    verification = await certification_service.verify_certificate(db, verification_code)
    if verification is None:
        raise NotFound("Certificate")
    return verification


@router.get("/me", response_model=List[CertificationResponse])
async def get_my_certifications(
    db: AsyncSession = Depends(get_db),
    identity: Optional[CallerIdentity] = Depends(get_caller_identity),
):
    user = await get_current_user(db, identity)
    certs = await certification_service.get_user_certifications(db, identity, user.id)
    return [CertificationResponse.from_certification(cert) for cert in certs]


@router.get("/users/{user_id}", response_model=List[CertificationResponse])
async def get_user_certifications(
    user_id: int,
    db: AsyncSession = Depends(get_db),
    identity: Optional[CallerIdentity] = Depends(get_caller_identity),
):
    certs = await certification_service.get_user_certifications(db, identity, user_id)
    return [CertificationResponse.from_certification(cert) for cert in certs]


@router.get("/stats", response_model=CertificationStats)
async def get_certification_stats(
    db: AsyncSession = Depends(get_db),
    identity: Optional[CallerIdentity] = Depends(get_caller_identity),
):
    return await certification_service.get_certification_stats(db, identity)


@router.get("/", response_model=List[CertificationResponse])
async def get_all_certifications(
    db: AsyncSession = Depends(get_db),
    identity: Optional[CallerIdentity] = Depends(get_caller_identity),
):
    certs = await certification_service.get_all_certifications(db, identity)
    return [CertificationResponse.from_certification(cert) for cert in certs]
