from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal


def whole_percent(part: float | int, whole: float | int) -> int:
    """Share of ``whole`` as an integer percent, halves rounded up (1 of 8 -> 13)."""
    if not whole or whole <= 0:
        return 0
    ratio = Decimal(str(max(0, part))) * 100 / Decimal(str(whole))
    return int(ratio.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
