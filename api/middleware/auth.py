from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError
import structlog

from api.services.auth_service import verify_access_token

logger = structlog.get_logger()

security = HTTPBearer()
optional_security = HTTPBearer(auto_error=False)


def _claims_to_user(payload: dict) -> dict:
    return {
        "user_id": payload["sub"],
        "tenant_id": payload["tenant_id"],
        "role": payload["role"],
        "email": payload.get("email"),
    }


def _invalid_token() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={
            "error": {
                "code": "AUTH_TOKEN_INVALID",
                "message": "Invalid or expired token",
            }
        },
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> dict:
    """FastAPI dependency: extract and verify JWT, return user claims dict."""
    try:
        return _claims_to_user(verify_access_token(credentials.credentials))
    except JWTError as e:
        logger.warning("auth_token_invalid", error=str(e))
        raise _invalid_token()


async def get_optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(optional_security),
) -> Optional[dict]:
    """Portal routes: anonymous link holders are allowed, a bad token is not."""
    if credentials is None:
        return None
    try:
        return _claims_to_user(verify_access_token(credentials.credentials))
    except JWTError as e:
        logger.warning("auth_token_invalid", error=str(e))
        raise _invalid_token()
