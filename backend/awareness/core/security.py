"""
Identity-provider token verification and certificate identifier generation.
"""
import secrets
import string
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

from jose import jwt, JWTError, ExpiredSignatureError

from awareness.core.config import settings
from awareness.core.exceptions import Unauthenticated


@dataclass(frozen=True)
class CallerIdentity:
    """The single fact the core consumes from the identity provider."""
    subject: str
    email: Optional[str] = None
    given_name: Optional[str] = None
    family_name: Optional[str] = None

    @classmethod
    def from_claims(cls, claims: Dict[str, Any]) -> "CallerIdentity":
        subject = claims.get("sub")
        if not subject:
            raise Unauthenticated("Token has no subject")
        return cls(
            subject=str(subject),
            email=claims.get("email"),
            given_name=claims.get("given_name"),
            family_name=claims.get("family_name"),
        )


class IdentityTokenVerifier:
    """Verifies identity-provider JWTs and extracts the caller identity."""

    def __init__(
        self,
        secret_key: str = None,
        algorithm: str = None,
        audience: Optional[str] = None,
        issuer: Optional[str] = None,
    ):
        self.secret_key = secret_key or settings.IDP_JWT_SECRET_KEY
        self.algorithm = algorithm or settings.IDP_JWT_ALGORITHM
        self.audience = audience if audience is not None else settings.IDP_JWT_AUDIENCE
        self.issuer = issuer if issuer is not None else settings.IDP_JWT_ISSUER

    def verify(self, token: str) -> CallerIdentity:
        """Verify and decode an identity token."""
        options = {"verify_aud": self.audience is not None}
        try:
            claims = jwt.decode(
                token,
                self.secret_key,
                algorithms=[self.algorithm],
                audience=self.audience,
                issuer=self.issuer,
                options=options,
            )
        except ExpiredSignatureError:
            raise Unauthenticated("Token has expired")
        except JWTError:
            raise Unauthenticated("Invalid token")

        return CallerIdentity.from_claims(claims)

    def issue(self, identity: CallerIdentity, expiration_seconds: int = 3600) -> str:
        """Create a token for an identity. Used by local tooling and tests."""
        now = int(time.time())
        claims = {
            "sub": identity.subject,
            "iat": now,
            "exp": now + expiration_seconds,
        }
        if identity.email:
            claims["email"] = identity.email
        if identity.given_name:
            claims["given_name"] = identity.given_name
        if identity.family_name:
            claims["family_name"] = identity.family_name
        if self.audience:
            claims["aud"] = self.audience
        if self.issuer:
            claims["iss"] = self.issuer
        return jwt.encode(claims, self.secret_key, algorithm=self.algorithm)


_CODE_ALPHABET = string.ascii_lowercase + string.digits


def _random_base36(length: int) -> str:
    return "".join(secrets.choice(_CODE_ALPHABET) for _ in range(length))


def generate_certificate_id(prefix: str = None) -> str:
    """Prefix, millisecond timestamp and random suffix, upper-cased."""
    prefix = prefix or settings.CERTIFICATE_ID_PREFIX
    timestamp = int(time.time() * 1000)
    return f"{prefix}-{timestamp}-{_random_base36(7)}".upper()


def generate_verification_code(length: int = None) -> str:
    """Opaque code for public certificate verification."""
    return _random_base36(length or settings.VERIFICATION_CODE_LENGTH)


# Global instance
identity_verifier = IdentityTokenVerifier()
