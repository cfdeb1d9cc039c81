from __future__ import annotations

import re
from datetime import datetime, timezone

from .storage import INCOMING_DIR, OUTGOING_DIR

MAX_NAME_CHARS = 120
DEFAULT_FILENAME = "document.pdf"
_UNSAFE_CHARS_RE = re.compile(r"[^A-Za-z0-9._-]")
_PDF_SUFFIX_RE = re.compile(r"\.pdf$", re.IGNORECASE)


def sanitize_filename(name: str) -> str:
    return _UNSAFE_CHARS_RE.sub("_", name)[:MAX_NAME_CHARS]


def incoming_name(
    original_name: str | None,
    sender_id: int | str | None,
    *,
    now: datetime | None = None,
) -> str:
    """Build `{UTC timestamp}_{sender}_{safe original}` ending in `.pdf`."""
    moment = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
    stamp = moment.strftime("%Y-%m-%d-%H-%M-%S")
    sender = "unknown" if sender_id is None else str(sender_id)
    base = f"{stamp}_{sender}_{sanitize_filename(original_name or DEFAULT_FILENAME)}"
    if not base.lower().endswith(".pdf"):
        base = f"{base}.pdf"
    return base


def outgoing_name(base_name: str) -> str:
    return _PDF_SUFFIX_RE.sub("_compressed.pdf", base_name)


def incoming_rel_path(base_name: str) -> str:
    return f"{INCOMING_DIR}/{base_name}"


def outgoing_rel_path(base_name: str) -> str:
    return f"{OUTGOING_DIR}/{outgoing_name(base_name)}"
