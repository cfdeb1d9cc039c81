from __future__ import annotations

import msgspec

__all__ = [
    "Chat",
    "Document",
    "File",
    "Message",
    "Update",
    "User",
]


class User(msgspec.Struct, forbid_unknown_fields=False):
    id: int
    is_bot: bool | None = None
    username: str | None = None


class Chat(msgspec.Struct, forbid_unknown_fields=False):
    id: int
    type: str | None = None


class Document(msgspec.Struct, forbid_unknown_fields=False):
    file_id: str
    file_unique_id: str | None = None
    file_name: str | None = None
    mime_type: str | None = None
    file_size: int | None = None


class Message(msgspec.Struct, forbid_unknown_fields=False, rename={"from_": "from"}):
    message_id: int
    chat: Chat
    from_: User | None = None
    date: int | None = None
    text: str | None = None
    caption: str | None = None
    document: Document | None = None


class Update(msgspec.Struct, forbid_unknown_fields=False):
    update_id: int
    message: Message | None = None


class File(msgspec.Struct, forbid_unknown_fields=False):
    file_id: str
    file_path: str | None = None
    file_size: int | None = None
