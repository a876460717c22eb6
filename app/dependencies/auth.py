from collections.abc import Callable
from typing import Annotated

from fastapi import Depends, HTTPException, Request, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.core.config import get_settings
from app.tickets.models import Role, User
from app.tickets.protocols import IdentityProvider

bearer_scheme = HTTPBearer(auto_error=False)


async def get_identity_provider(request: Request) -> IdentityProvider:
    identity = getattr(request.app.state, "identity_provider", None)
    if identity is None:
        raise HTTPException(status_code=503, detail="Identity provider is not configured")
    return identity


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Security(bearer_scheme)],
    identity: Annotated[IdentityProvider, Depends(get_identity_provider)],
) -> User:
    """Resolve the bearer token to a user.

    Tokens are issued elsewhere; here they map to user ids through the
    ``api_tokens`` setting and the user is loaded from the identity provider.
    """

    if credentials is None:
        raise HTTPException(status_code=401, detail="Missing authentication credentials")

    user_id = get_settings().api_tokens.get(credentials.credentials)
    if user_id is None:
        raise HTTPException(status_code=401, detail="Invalid authentication credentials")

    user = await identity.resolve_user(user_id)
    if user is None:
        raise HTTPException(status_code=401, detail="Invalid authentication credentials")
    return user


def role_required(*roles: Role) -> Callable[[User], User]:
    """Dependency factory ensuring the current user holds one of ``roles``."""

    async def dependency(user: Annotated[User, Depends(get_current_user)]) -> User:
        if not user.has_role(*roles):
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return user

    return dependency


CurrentUser = Annotated[User, Depends(get_current_user)]
