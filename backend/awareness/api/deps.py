"""
Request-scoped dependencies shared by the v1 routers.
"""

from typing import Optional
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from awareness.core.security import CallerIdentity, identity_verifier


# auto_error=False: a missing header is "no identity", not a 403 from FastAPI
bearer_scheme = HTTPBearer(auto_error=False)


async def get_caller_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Optional[CallerIdentity]:
    """Decode the identity-provider token, if the request carries one."""
    if credentials is None:
        return None
    return identity_verifier.verify(credentials.credentials)
