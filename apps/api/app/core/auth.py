import logging
from dataclasses import dataclass

from jose import JWTError, jwt
from starlette.requests import Request

from app.core.config import get_settings

logger = logging.getLogger("app.auth")


@dataclass
class AuthUser:
    sub: str
    roles: list[str]
    agent_id: int | None = None


_ANONYMOUS = ("anonymous", ["guest"])


async def get_current_user(request: Request) -> AuthUser:
    auth_header = request.headers.get("authorization", "")
    token = auth_header.removeprefix("Bearer ") if auth_header.startswith("Bearer ") else ""

    if not token:
        return AuthUser(sub=_ANONYMOUS[0], roles=list(_ANONYMOUS[1]))

    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError as exc:
        logger.warning("auth.invalid_token", extra={"error": str(exc)[:500]})
        return AuthUser(sub=_ANONYMOUS[0], roles=list(_ANONYMOUS[1]))

    subject = str(payload.get("sub", _ANONYMOUS[0]))
    roles = payload.get("roles", ["user"])
    if not isinstance(roles, list):
        roles = ["user"]
    agent_claim = payload.get("agent_id")
    agent_id = int(agent_claim) if isinstance(agent_claim, (int, str)) and str(agent_claim).isdigit() else None
    request.state.user_id = subject
    return AuthUser(sub=subject, roles=[str(role) for role in roles], agent_id=agent_id)
