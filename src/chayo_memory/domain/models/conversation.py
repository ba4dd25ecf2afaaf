"""Conversation models and the parsers for each accepted input format."""

import json
import re
from collections.abc import Mapping
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from chayo_memory.core.base import ValidationErrorDetails
from chayo_memory.core.errors import ValidationError


class MessageRole(str, Enum):
    """Message roles in a conversation."""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class ConversationFormat(str, Enum):
    """Shapes accepted by ``process_business_conversations``."""

    JSON = "json"  # JSON strings
    STRUCTURED = "structured"  # already-decoded dicts and lists
    TEXT = "text"  # "Speaker: utterance" transcripts


SPEAKER_ROLES: dict[str, MessageRole] = {
    "user": MessageRole.USER,
    "customer": MessageRole.USER,
    "client": MessageRole.USER,
    "cliente": MessageRole.USER,
    "assistant": MessageRole.ASSISTANT,
    "agent": MessageRole.ASSISTANT,
    "bot": MessageRole.ASSISTANT,
    "business": MessageRole.ASSISTANT,
    "chayo": MessageRole.ASSISTANT,
    "system": MessageRole.SYSTEM,
}

_ROLE_KEYS = ("role", "speaker", "sender", "from")
_CONTENT_KEYS = ("content", "text", "message")
_SPEAKER_LINE = re.compile(r"^\s*([^\W\d][\w .'-]{0,39}?)\s*:\s*(.*)$")


def role_for_speaker(speaker: str | None) -> tuple[MessageRole, str | None]:
    """Map a speaker name to a role.

    Unknown speakers are treated as the user and their label is returned so
    it can be kept alongside the message.
    """
    if not speaker or not speaker.strip():
        return MessageRole.USER, None
    label = speaker.strip()
    role = SPEAKER_ROLES.get(label.lower())
    if role is None:
        return MessageRole.USER, label
    return role, None


class ConversationMessage(BaseModel):
    """A single turn in a conversation."""

    role: MessageRole
    content: str
    speaker: str | None = Field(default=None, description="Original label for speakers with no known role")

    def render(self) -> str:
        return f"{self.role.value}: {self.content}"


class Conversation(BaseModel):
    """An ordered list of turns plus caller metadata."""

    messages: list[ConversationMessage] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)

    def speakers(self) -> list[str]:
        """Labels of speakers that were mapped to a role by default."""
        seen: list[str] = []
        for message in self.messages:
            if message.speaker and message.speaker not in seen:
                seen.append(message.speaker)
        return seen


def _invalid(message: str, field: str, value: Any = None) -> ValidationError:
    return ValidationError(
        message,
        details=ValidationErrorDetails(
            source="conversation_parser",
            operation="parse_conversation",
            field=field,
            actual_value=value if isinstance(value, str | int | float | bool) else type(value).__name__,
        ),
    )


def _message_from_mapping(raw: Mapping[str, Any]) -> ConversationMessage | None:
    speaker = next((raw[key] for key in _ROLE_KEYS if raw.get(key) is not None), None)
    content = next((raw[key] for key in _CONTENT_KEYS if raw.get(key) is not None), None)
    if content is None:
        raise _invalid("Message has no content", field="content", value=dict(raw))
    if not isinstance(content, str):
        raise _invalid("Message content must be a string", field="content", value=content)
    if speaker is not None and not isinstance(speaker, str):
        raise _invalid("Message role must be a string", field="role", value=speaker)

    content = content.strip()
    if not content:
        return None
    role, label = role_for_speaker(speaker)
    return ConversationMessage(role=role, content=content, speaker=label)


def _messages_from_list(raw: list[Any]) -> list[ConversationMessage]:
    messages = []
    for item in raw:
        if not isinstance(item, Mapping):
            raise _invalid("Each message must be an object", field="messages", value=item)
        message = _message_from_mapping(item)
        if message is not None:
            messages.append(message)
    return messages


def parse_structured(raw: Any) -> Conversation:
    """Parse a decoded conversation.

    Accepts ``{"messages": [...], "metadata": {...}}``, a bare list of
    messages, or a single message object.
    """
    if isinstance(raw, list):
        return Conversation(messages=_messages_from_list(raw))

    if not isinstance(raw, Mapping):
        raise _invalid("Conversation must be an object or a list of messages", field="conversation", value=raw)

    if "messages" in raw:
        messages = raw["messages"]
        if not isinstance(messages, list):
            raise _invalid("'messages' must be a list", field="messages", value=messages)
        metadata = raw.get("metadata") or {}
        if not isinstance(metadata, Mapping):
            raise _invalid("'metadata' must be an object", field="metadata", value=metadata)
        return Conversation(messages=_messages_from_list(messages), metadata=dict(metadata))

    message = _message_from_mapping(raw)
    return Conversation(messages=[message] if message else [])


def parse_json(raw: Any) -> Conversation:
    if not isinstance(raw, str):
        raise _invalid("JSON conversations must be strings", field="conversation", value=raw)
    try:
        decoded = json.loads(raw)
    except json.JSONDecodeError as e:
        raise _invalid(f"Conversation is not valid JSON: {e.msg}", field="conversation") from e
    return parse_structured(decoded)


def parse_text(raw: Any) -> Conversation:
    """Parse a ``Speaker: utterance`` transcript.

    A line without a speaker prefix continues the previous turn.
    """
    if not isinstance(raw, str):
        raise _invalid("Text conversations must be strings", field="conversation", value=raw)

    turns: list[tuple[str | None, list[str]]] = []
    for line in raw.splitlines():
        if not line.strip():
            continue
        match = _SPEAKER_LINE.match(line)
        if match:
            turns.append((match.group(1), [match.group(2).strip()]))
        elif turns:
            turns[-1][1].append(line.strip())
        else:
            turns.append((None, [line.strip()]))

    messages = []
    for speaker, parts in turns:
        content = " ".join(part for part in parts if part)
        if not content:
            continue
        role, label = role_for_speaker(speaker)
        messages.append(ConversationMessage(role=role, content=content, speaker=label))
    return Conversation(messages=messages)


_PARSERS = {
    ConversationFormat.JSON: parse_json,
    ConversationFormat.STRUCTURED: parse_structured,
    ConversationFormat.TEXT: parse_text,
}


def parse_conversation(raw: Any, format: ConversationFormat | str) -> Conversation:
    try:
        conversation_format = ConversationFormat(format)
    except ValueError as e:
        raise _invalid(f"Unsupported conversation format: {format!r}", field="format", value=str(format)) from e
    return _PARSERS[conversation_format](raw)
