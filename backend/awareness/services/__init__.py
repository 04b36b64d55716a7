from awareness.services.audit_service import role_audit_service
from awareness.services.certification_service import certification_service
from awareness.services.content_service import content_service
from awareness.services.policy_service import policy_service
from awareness.services.progress_tracker import progress_tracker
from awareness.services.report_service import report_service

__all__ = [
    "role_audit_service",
    "certification_service",
    "content_service",
    "policy_service",
    "progress_tracker",
    "report_service",
]
