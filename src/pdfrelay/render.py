from __future__ import annotations

from .model import CompressionResult

_UNITS = ("B", "KB", "MB", "GB")
BAR_WIDTH = 20
BAR_FILLED = "█"
BAR_EMPTY = "░"


def format_bytes(size: int) -> str:
    value = float(max(0, size))
    unit = 0
    while value >= 1024 and unit < len(_UNITS) - 1:
        value /= 1024
        unit += 1
    if unit == 0:
        return f"{value:.0f} {_UNITS[unit]}"
    return f"{value:.2f} {_UNITS[unit]}"


def percent_reduction(before: int, after: int) -> str:
    if before <= 0:
        return "0.0"
    pct = max(0.0, (before - after) * 100 / before)
    return f"{pct:.1f}"


def progress_bar(before: int, after: int, width: int = BAR_WIDTH) -> str:
    # Filled segments show the size that remains, not the size saved.
    if before <= 0:
        filled = 0
    else:
        filled = round(after / before * width)
    filled = min(width, max(0, filled))
    return BAR_FILLED * filled + BAR_EMPTY * (width - filled)


def compression_caption(result: CompressionResult, correlation_id: str) -> str:
    before = result.size_before
    after = result.size_after
    return "\n".join(
        [
            f"Before: {format_bytes(before)}",
            f"After: {format_bytes(after)}",
            f"Saved: {percent_reduction(before, after)}%",
            progress_bar(before, after),
            f"CID: {correlation_id}",
        ]
    )
