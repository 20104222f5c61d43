from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from featureboard.errors import AuthError
from featureboard.identity import IdentityProvider, Principal

from .services import AdminServiceDep, get_identity_provider

bearer_scheme = HTTPBearer(auto_error=False)


async def get_optional_principal(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Security(bearer_scheme)],
    identity: Annotated[IdentityProvider, Depends(get_identity_provider)],
) -> Principal | None:
    """Resolve the caller, or ``None`` for anonymous requests.

    The result is cached on the request so several dependencies share one
    identity lookup.
    """

    if hasattr(request.state, "principal"):
        return request.state.principal

    principal = None
    if credentials is not None and credentials.credentials:
        principal = await identity.get_principal(credentials.credentials)
    request.state.principal = principal
    return principal


async def get_current_principal(
    principal: Annotated[Principal | None, Depends(get_optional_principal)],
) -> Principal:
    if principal is None:
        raise AuthError("Unauthorized")
    return principal


async def require_system_admin(
    principal: Annotated[Principal, Depends(get_current_principal)],
    admins: AdminServiceDep,
) -> Principal:
    if not await admins.is_admin(principal.email):
        raise AuthError("Forbidden - System administrator access required", forbidden=True)
    return principal


OptionalPrincipal = Annotated[Principal | None, Depends(get_optional_principal)]
CurrentPrincipal = Annotated[Principal, Depends(get_current_principal)]
AdminPrincipal = Annotated[Principal, Depends(require_system_admin)]
