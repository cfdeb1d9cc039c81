from __future__ import annotations

from typing import Any

import msgspec

from ..logging import get_logger
from ..model import Attachment, Message, Update
from . import api_models

logger = get_logger(__name__)


def parse_update(raw: dict[str, Any]) -> Update | None:
    """Decode one raw update.

    Returns None only when not even the update id can be recovered; an update
    whose message fails to decode keeps its id so the cursor can move past it.
    """
    try:
        update = msgspec.convert(raw, type=api_models.Update)
    except msgspec.ValidationError as exc:
        update_id = raw.get("update_id") if isinstance(raw, dict) else None
        if isinstance(update_id, bool) or not isinstance(update_id, int):
            logger.warning("telegram.update.undecodable", error=str(exc))
            return None
        logger.warning(
            "telegram.update.bad_message", update_id=update_id, error=str(exc)
        )
        return Update(update_id=update_id)
    if update.message is None:
        return Update(update_id=update.update_id)
    return Update(update_id=update.update_id, message=_convert_message(update.message))


def parse_updates(raw_updates: list[Any]) -> tuple[Update, ...]:
    parsed: list[Update] = []
    for raw in raw_updates:
        if not isinstance(raw, dict):
            logger.warning("telegram.update.invalid", payload=raw)
            continue
        update = parse_update(raw)
        if update is not None:
            parsed.append(update)
    return tuple(parsed)


def _convert_message(msg: api_models.Message) -> Message:
    attachment = None
    if msg.document is not None:
        doc = msg.document
        attachment = Attachment(
            file_id=doc.file_id,
            mime_type=doc.mime_type,
            file_size=doc.file_size,
            file_name=doc.file_name,
        )
    return Message(
        chat_id=msg.chat.id,
        sender_id=msg.from_.id if msg.from_ is not None else None,
        text=msg.text,
        attachment=attachment,
    )
