from dataclasses import dataclass

from fastapi import HTTPException, status
from jose import JWTError, jwt
from starlette.requests import Request

from territory.core.config import get_settings


@dataclass
class AuthUser:
    sub: str


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(request: Request) -> AuthUser:
    auth_header = request.headers.get("authorization", "")
    token = auth_header.replace("Bearer ", "") if auth_header.startswith("Bearer ") else ""

    if not token:
        raise _unauthorized("missing bearer token")

    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        raise _unauthorized("invalid token")

    subject = payload.get("sub")
    if not subject:
        raise _unauthorized("token has no subject")
    return AuthUser(sub=str(subject))


def issue_token(subject: str) -> str:
    settings = get_settings()
    return jwt.encode({"sub": subject}, settings.jwt_secret, algorithm=settings.jwt_algorithm)
