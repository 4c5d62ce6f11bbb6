from __future__ import annotations

from .percent import whole_percent

SUPPORTED_LANGUAGES = ("en", "es")
DEFAULT_LANGUAGE = "en"
WATCHED_THRESHOLD = 90


def format_duration(seconds: float | int | None) -> str:
    """``75 -> "1:15"``, ``3725 -> "1:02:05"``."""
    total = max(0, int(seconds or 0))
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


def format_file_size(size: int | None) -> str:
    value = float(size or 0)
    if value <= 0:
        return "0 Bytes"
    units = ("Bytes", "KB", "MB", "GB", "TB")
    index = 0
    while value >= 1024 and index < len(units) - 1:
        value /= 1024
        index += 1
    text = f"{value:.2f}".rstrip("0").rstrip(".")
    return f"{text} {units[index]}"


def watched_percentage(current_time: float | int | None, duration: float | int | None) -> int:
    if not duration or duration <= 0:
        return 0
    return min(100, whole_percent(float(current_time or 0), float(duration)))


def is_video_completed(current_time: float | int | None, duration: float | int | None) -> bool:
    return watched_percentage(current_time, duration) >= WATCHED_THRESHOLD


def normalize_language(value: str | None) -> str:
    code = (value or "").strip().lower()[:2]
    return code if code in SUPPORTED_LANGUAGES else DEFAULT_LANGUAGE

