"""FastAPI dependencies: get_current_subject, require_operator.

Usage in any protected router:
    from src.qm_gateway.auth.dependencies import get_current_subject

    @router.get("/protected")
    async def protected(principal: Principal = Depends(get_current_subject)):
        ...
"""

from dataclasses import dataclass

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from src.qm_common.errors import InvalidCredentialsError, OperatorRequiredError
from src.qm_gateway.auth.jwt_handler import ROLE_OPERATOR, ROLE_TRADER, decode_token

bearer_scheme = HTTPBearer(auto_error=False)

_CREDENTIALS_EXCEPTION = HTTPException(
    status_code=status.HTTP_401_UNAUTHORIZED,
    detail="Invalid or expired token",
    headers={"WWW-Authenticate": "Bearer"},
)


@dataclass(frozen=True)
class Principal:
    subject: str
    role: str

    @property
    def is_operator(self) -> bool:
        return self.role == ROLE_OPERATOR


async def get_current_subject(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> Principal:
    """Validate the Bearer token. Raises HTTP 401 if missing, invalid or expired."""
    if credentials is None:
        raise _CREDENTIALS_EXCEPTION
    try:
        payload = decode_token(credentials.credentials)
    except InvalidCredentialsError:
        raise _CREDENTIALS_EXCEPTION from None
    return Principal(subject=payload["sub"], role=payload.get("role", ROLE_TRADER))


async def require_operator(
    principal: Principal = Depends(get_current_subject),
) -> Principal:
    """Raises HTTP 403 (AppError code 6099) unless the caller holds the operator role."""
    if not principal.is_operator:
        raise OperatorRequiredError()
    return principal
