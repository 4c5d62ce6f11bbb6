from __future__ import annotations

import stripe

from .config import settings
from .errors import ConfigError

TEST_KEY_PREFIXES = ("sk_test_", "rk_test_")
LIVE_KEY_PREFIXES = ("sk_live_", "rk_live_")


def key_mode(secret_key: str | None) -> str | None:
    """Classify a Stripe secret or restricted key as ``"test"`` or ``"live"``."""
    key = (secret_key or "").strip()
    if key.startswith(TEST_KEY_PREFIXES):
        return "test"
    if key.startswith(LIVE_KEY_PREFIXES):
        return "live"
    return None


def current_mode() -> str | None:
    return key_mode(settings.stripe_secret_key)


def require_stripe() -> str:
    """Point the SDK at the configured key and return its mode, or fail with 503."""
    key = (settings.stripe_secret_key or "").strip()
    if not key:
        raise ConfigError("Stripe is not configured (set STRIPE_SECRET_KEY)")
    mode = key_mode(key)
    if mode is None:
        raise ConfigError("STRIPE_SECRET_KEY must be a test or live secret key")
    stripe.api_key = key
    return mode


__all__ = ["current_mode", "key_mode", "require_stripe"]
