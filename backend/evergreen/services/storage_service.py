from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

from ..config import settings
from ..errors import ConfigError, NotFoundError, UpstreamError

logger = logging.getLogger(__name__)

MIN_URL_TTL_SECONDS = 60
MAX_URL_TTL_SECONDS = 24 * 60 * 60


class StorageServiceError(UpstreamError):
    """Supabase Storage refused or failed a signing request."""


class StorageObjectNotFoundError(NotFoundError):
    pass


@dataclass(frozen=True)
class SignedUrl:
    url: str
    expires_in: int


def clamp_ttl(ttl: int) -> int:
    return max(MIN_URL_TTL_SECONDS, min(int(ttl), MAX_URL_TTL_SECONDS))


def _reports_missing_object(response: httpx.Response) -> bool:
    if response.status_code == 404:
        return True
    # Storage answers 400 with a not_found body for unknown keys.
    try:
        body = response.json()
    except ValueError:
        return False
    if not isinstance(body, dict):
        return False
    return body.get("error") == "not_found" or body.get("message") == "Object not found"


class StorageService:
    """Signs private lesson videos kept in a Supabase Storage bucket."""

    def __init__(
        self,
        *,
        bucket: str | None = None,
        supabase_url: str | None = None,
        service_role_key: str | None = None,
    ) -> None:
        self.bucket = (bucket or settings.video_bucket).strip() or "course-videos"
        if supabase_url is None and settings.supabase_url is not None:
            supabase_url = settings.supabase_url.unicode_string()
        self._base_url = (supabase_url or "").rstrip("/")
        self._key = service_role_key or settings.supabase_service_role_key

    @property
    def enabled(self) -> bool:
        return bool(self._base_url and self._key)

    def object_key(self, path: str) -> str:
        """Strip leading slashes and a redundant bucket prefix from a stored path."""
        key = (path or "").strip().lstrip("/")
        prefix = f"{self.bucket}/"
        return key[len(prefix):] if key.startswith(prefix) else key

    def absolute_url(self, signed_path: str) -> str:
        if signed_path.startswith(("http://", "https://")):
            return signed_path
        if signed_path.startswith("/storage/"):
            return f"{self._base_url}{signed_path}"
        return f"{self._base_url}/storage/v1/{signed_path.lstrip('/')}"

    async def sign(self, path: str, ttl: int) -> SignedUrl:
        key = self.object_key(path)
        if not key:
            raise StorageServiceError("Video storage path is empty")
        if not self.enabled:
            raise ConfigError("Supabase Storage is not configured")

        expires_in = clamp_ttl(ttl)
        async with httpx.AsyncClient(timeout=10.0) as client:
            try:
                response = await client.post(
                    f"{self._base_url}/storage/v1/object/sign/{self.bucket}/{key}",
                    json={"expiresIn": expires_in},
                    headers={"apikey": self._key, "Authorization": f"Bearer {self._key}"},
                )
            except httpx.HTTPError as exc:
                raise StorageServiceError("Failed to reach Supabase Storage") from exc

        if response.status_code >= 400:
            if _reports_missing_object(response):
                raise StorageObjectNotFoundError(f"Video object {key} not found")
            logger.warning(
                "Video URL signing rejected",
                extra={"status_code": response.status_code, "bucket": self.bucket, "key": key},
            )
            raise StorageServiceError(
                f"Supabase Storage signing failed with status {response.status_code}"
            )

        body = response.json()
        signed_path = body.get("signedURL") or body.get("signedUrl")
        if not isinstance(signed_path, str) or not signed_path:
            raise StorageServiceError("Supabase Storage response missing signed URL")
        return SignedUrl(url=self.absolute_url(signed_path), expires_in=expires_in)


__all__ = [
    "MAX_URL_TTL_SECONDS",
    "MIN_URL_TTL_SECONDS",
    "SignedUrl",
    "StorageObjectNotFoundError",
    "StorageService",
    "StorageServiceError",
    "clamp_ttl",
]
