from dataclasses import dataclass

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.core.context import set_actor_id
from app.core.security import JWTKeyError, decode_token
from app.core.settings import settings


@dataclass(frozen=True, slots=True)
class Principal:
    subject: str
    role: str


bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_principal(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> Principal:
    if not settings.auth_enabled:
        principal = Principal(settings.anonymous_user_id, settings.anonymous_user_role)
        set_actor_id(principal.subject)
        return principal

    if credentials is None or credentials.scheme.lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        payload = decode_token(credentials.credentials)
    except (ValueError, JWTKeyError) as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc

    principal = Principal(
        subject=str(payload["sub"]),
        role=str(payload.get("role") or settings.anonymous_user_role),
    )
    set_actor_id(principal.subject)
    return principal


def get_client_ip(request: Request) -> str | None:
    # TrustedProxiesMiddleware has already rewritten request.client
    return request.client.host if request.client else None
