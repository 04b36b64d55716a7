from .user import User, UserRole, SystemBootstrap
from .training import Quiz, TrainingModule, ContentStatus, ModuleType, Difficulty
from .progress import QuizResult, UserProgress, CompletionMethod
from .certification import (
    CertificationTemplate, Certification, CertificationStatus,
    EffectiveStatus, OverallScoreScope, effective_status
)
from .audit_log import RoleAuditLog, AuditChainHead, ImmutableAuditRecordError
from .policy import Policy, PolicyAcknowledgment

__all__ = [
    "User",
    "UserRole",
    "SystemBootstrap",
    "Quiz",
    "TrainingModule",
    "ContentStatus",
    "ModuleType",
    "Difficulty",
    "QuizResult",
    "UserProgress",
    "CompletionMethod",
    "CertificationTemplate",
    "Certification",
    "CertificationStatus",
    "EffectiveStatus",
    "OverallScoreScope",
    "effective_status",
    "RoleAuditLog",
    "AuditChainHead",
    "ImmutableAuditRecordError",
    "Policy",
    "PolicyAcknowledgment",
]
