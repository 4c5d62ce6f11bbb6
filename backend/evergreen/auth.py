from datetime import datetime, timezone
from typing import Annotated, Any

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt

from .config import settings
from .logging_context import set_user_context
from .repositories import users as users_repo

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/v1/token")
oauth2_optional_scheme = OAuth2PasswordBearer(tokenUrl="/auth/v1/token", auto_error=False)

ADMIN_ROLE = "super-admin"


def decode_access_token(token: str) -> dict[str, Any]:
    """Verify a Supabase access token signed with the project's JWT secret."""
    if not settings.supabase_jwt_secret:
        raise JWTError("SUPABASE_JWT_SECRET is not configured")
    return jwt.decode(
        token,
        settings.supabase_jwt_secret,
        algorithms=["HS256"],
        audience=settings.supabase_jwt_audience,
        options={"verify_exp": False},
    )


def is_token_expired(payload: dict[str, Any], *, now: datetime | None = None) -> bool:
    exp = payload.get("exp")
    if exp is None:
        return False
    if isinstance(exp, (int, float)):
        exp_dt = datetime.fromtimestamp(exp, tz=timezone.utc)
    elif isinstance(exp, datetime):
        exp_dt = exp if exp.tzinfo else exp.replace(tzinfo=timezone.utc)
    else:
        return False
    now = now or datetime.now(timezone.utc)
    return exp_dt <= now


def is_admin_claims(app_metadata: Any) -> bool:
    if not isinstance(app_metadata, dict):
        return False
    return app_metadata.get("role") == ADMIN_ROLE


async def _load_user(payload: dict[str, Any]) -> dict[str, Any] | None:
    user_id = payload.get("sub")
    if not user_id:
        return None
    row = await users_repo.get_user(str(user_id))
    if not row:
        return None
    data = dict(row)
    data["is_admin"] = is_admin_claims(payload.get("app_metadata")) or is_admin_claims(
        data.pop("app_metadata", None)
    )
    set_user_context(str(data["id"]))
    return data


async def get_current_user(token: Annotated[str, Depends(oauth2_scheme)]):
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = decode_access_token(token)
    except JWTError as exc:
        raise credentials_exception from exc
    if is_token_expired(payload):
        raise credentials_exception

    user = await _load_user(payload)
    if not user:
        raise credentials_exception
    return user


async def get_optional_user(
    token: Annotated[str | None, Depends(oauth2_optional_scheme)],
):
    if not token:
        return None
    try:
        payload = decode_access_token(token)
    except JWTError:
        return None
    if is_token_expired(payload):
        return None
    return await _load_user(payload)


CurrentUser = Annotated[dict, Depends(get_current_user)]
OptionalCurrentUser = Annotated[dict | None, Depends(get_optional_user)]
