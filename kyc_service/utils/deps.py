import logging
from dataclasses import dataclass

from jose import JWTError, jwt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer

from kyc_service.core.config import settings
from kyc_service.core.context import RequestContext
from kyc_service.core.errors import ConfigurationError

log = logging.getLogger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="auth/login", auto_error=False)


@dataclass(frozen=True)
class CurrentUser:
    user_id: str
    role: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == settings.ADMIN_ROLE


async def get_current_user(
    request: Request,
    token: str | None = Depends(oauth2_scheme),
) -> CurrentUser:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    token_value = token or request.cookies.get(settings.ACCESS_TOKEN_COOKIE_NAME)
    if not token_value:
        raise credentials_exception

    if not settings.SECRET_KEY:
        log.error("SECRET_KEY is not configured; rejecting authenticated request")
        raise ConfigurationError("SECRET_KEY is not configured")

    try:
        payload = jwt.decode(token_value, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        user_id: str | None = payload.get("sub")
        if user_id is None:
            raise credentials_exception
    except JWTError:
        raise credentials_exception

    return CurrentUser(user_id=str(user_id), role=payload.get("role"))


async def require_admin(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if not user.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return user


def get_request_context(request: Request) -> RequestContext:
    forwarded = request.headers.get("x-forwarded-for")
    ip_address = forwarded.split(",")[0].strip() if forwarded else (request.client.host if request.client else "unknown")
    return RequestContext(
        ip_address=ip_address or "unknown",
        user_agent=request.headers.get("user-agent", "unknown"),
        correlation_id=request.headers.get("x-correlation-id") or RequestContext().correlation_id,
    )
