from __future__ import annotations

import re
import secrets
import string

_NON_SLUG_CHARS = re.compile(r"[^a-z0-9]+")
_SUFFIX_ALPHABET = string.ascii_lowercase + string.digits


def slugify(value: str) -> str:
    slug = _NON_SLUG_CHARS.sub("-", (value or "").strip().lower()).strip("-")
    return slug or "course"


def random_suffix(length: int = 6) -> str:
    return "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(length))


def email_prefix(email: str) -> str:
    return (email or "").split("@", 1)[0].strip()


def team_account_name(email: str) -> str:
    return f"{email_prefix(email) or 'New'}'s Team"


def team_account_slug(email: str) -> str:
    prefix = slugify(email_prefix(email)) if email_prefix(email) else "team"
    return f"{prefix}-team-{random_suffix()}"
