from __future__ import annotations

import logging
from typing import Any, Mapping

import httpx

from ..config import settings
from ..errors import ConfigError, UpstreamError

logger = logging.getLogger(__name__)


def _admin_headers() -> dict[str, str]:
    key = settings.supabase_service_role_key
    if not settings.supabase_url or not key:
        raise ConfigError("Supabase admin API is not configured")
    return {
        "apikey": key,
        "Authorization": f"Bearer {key}",
        "Content-Type": "application/json",
    }


def _admin_url(path: str) -> str:
    base = settings.supabase_url.unicode_string().rstrip("/")  # type: ignore[union-attr]
    return f"{base}/auth/v1/admin/{path.lstrip('/')}"


async def create_user(
    email: str,
    *,
    user_metadata: Mapping[str, Any] | None = None,
) -> dict[str, Any]:
    """Create a confirmed auth user through the Supabase admin API."""
    headers = _admin_headers()
    payload = {
        "email": email,
        "email_confirm": True,
        "user_metadata": dict(user_metadata or {}),
    }
    async with httpx.AsyncClient(timeout=10.0) as client:
        try:
            response = await client.post(_admin_url("users"), json=payload, headers=headers)
        except httpx.HTTPError as exc:
            raise UpstreamError("Failed to call Supabase admin API") from exc

    if response.status_code >= 400:
        logger.warning(
            "Supabase user creation failed",
            extra={"status_code": response.status_code, "email": email},
        )
        raise UpstreamError(
            f"Supabase user creation failed with status {response.status_code}"
        )

    body = response.json()
    user = body.get("user") if isinstance(body, dict) and "user" in body else body
    if not isinstance(user, dict) or not user.get("id"):
        raise UpstreamError("Supabase user creation returned no id")
    return user


__all__ = ["create_user"]
