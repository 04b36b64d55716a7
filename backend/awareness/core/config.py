from pydantic_settings import BaseSettings
from pydantic import Field, validator
from typing import List, Optional
import secrets


class Settings(BaseSettings):
    # Application settings
    APP_NAME: str = "Security Awareness Compliance"
    DEBUG: bool = False
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    LOG_LEVEL: str = "INFO"

    # Identity provider token settings
    IDP_JWT_SECRET_KEY: str = Field(default_factory=lambda: secrets.token_urlsafe(32))
    IDP_JWT_ALGORITHM: str = "HS256"
    IDP_JWT_AUDIENCE: Optional[str] = None
    IDP_JWT_ISSUER: Optional[str] = None

    # CORS settings
    ALLOWED_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]

    # Database settings
    DATABASE_URL: str = "sqlite+aiosqlite:///./awareness.db"
    DATABASE_ECHO: bool = False
    # Seconds a SQLite connection waits on a locked database
    DATABASE_BUSY_TIMEOUT: float = 15.0

    # Quiz scoring
    DEFAULT_QUIZ_PASS_THRESHOLD: int = 70

    # Certification settings
    DEFAULT_RENEWAL_VALIDITY_DAYS: int = 365
    CERTIFICATE_EXPIRY_WARNING_DAYS: int = 30
    CERTIFICATE_ID_PREFIX: str = "RCR-CERT"
    VERIFICATION_CODE_LENGTH: int = 24
    # "all_results" averages every quiz result of the user,
    # "required_quizzes" only the template's required quizzes
    OVERALL_SCORE_SCOPE: str = "all_results"

    # Audit settings
    AUDIT_LOG_PAGE_SIZE: int = 100

    @validator("ALLOWED_ORIGINS", pre=True)
    def parse_origins(cls, v):
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",")]
        return v

    @validator("DATABASE_URL")
    def validate_database_url(cls, v):
        if not v:
            raise ValueError("DATABASE_URL is required")
        return v

    @validator("DEFAULT_QUIZ_PASS_THRESHOLD")
    def validate_pass_threshold(cls, v):
        if v < 0 or v > 100:
            raise ValueError("DEFAULT_QUIZ_PASS_THRESHOLD must be between 0 and 100")
        return v

    @validator("OVERALL_SCORE_SCOPE")
    def validate_overall_score_scope(cls, v):
        if v not in ("all_results", "required_quizzes"):
            raise ValueError("OVERALL_SCORE_SCOPE must be 'all_results' or 'required_quizzes'")
        return v

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
