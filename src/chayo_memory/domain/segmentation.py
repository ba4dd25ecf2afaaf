"""Turn-aware chunking of conversations into embeddable segments.

Turns are grouped in order while a chunk stays within the token budget. A
turn that alone exceeds the budget is split on sentence boundaries, then on
word boundaries, and as a last resort by characters.

Chunk lines are rendered as ``role: content``, so the label of a speaker
that was mapped to a role by default does not appear in the chunk text; it
survives only in the segment's ``speakers`` metadata attribute.
"""

import re

from pydantic import BaseModel, Field

from chayo_memory.domain.models import Conversation, MessageRole

_SENTENCE_BOUNDARY = re.compile(r"(?<=[.!?¡¿])\s+")


def estimate_tokens(text: str) -> int:
    """Rough token count: about four characters per token."""
    return max(1, len(text) // 4)


def _fits(text: str, max_tokens: int) -> bool:
    return estimate_tokens(text) <= max_tokens


class ConversationChunk(BaseModel):
    text: str
    roles: list[MessageRole] = Field(default_factory=list)
    turn_count: int = 1
    chunk_index: int = 0


def _split_words(sentence: str, prefix: str, max_tokens: int) -> list[str]:
    pieces: list[str] = []
    current = ""
    width = max(1, 4 * max_tokens + 3 - len(prefix))

    for word in sentence.split():
        if not _fits(prefix + word, max_tokens):
            if current:
                pieces.append(current)
                current = ""
            pieces.extend(word[i : i + width] for i in range(0, len(word), width))
            continue

        candidate = f"{current} {word}" if current else word
        if _fits(prefix + candidate, max_tokens):
            current = candidate
        else:
            pieces.append(current)
            current = word

    if current:
        pieces.append(current)
    return pieces


def split_oversized(content: str, prefix: str, max_tokens: int) -> list[str]:
    """Split ``content`` so that ``prefix + piece`` fits the budget for every piece."""
    pieces: list[str] = []
    current = ""

    for sentence in _SENTENCE_BOUNDARY.split(content.strip()):
        if not sentence:
            continue
        units = [sentence] if _fits(prefix + sentence, max_tokens) else _split_words(sentence, prefix, max_tokens)
        for unit in units:
            candidate = f"{current} {unit}" if current else unit
            if _fits(prefix + candidate, max_tokens):
                current = candidate
            else:
                if current:
                    pieces.append(current)
                current = unit

    if current:
        pieces.append(current)
    return pieces


def chunk_conversation(conversation: Conversation, max_tokens: int) -> list[ConversationChunk]:
    """Split a conversation into chunks of whole turns where possible.

    Each turn is rendered as ``role: content`` on its own line.
    """
    lines: list[tuple[int, MessageRole, str]] = []
    for index, message in enumerate(conversation.messages):
        rendered = message.render()
        if _fits(rendered, max_tokens):
            lines.append((index, message.role, rendered))
            continue
        prefix = f"{message.role.value}: "
        for piece in split_oversized(message.content, prefix, max_tokens):
            lines.append((index, message.role, prefix + piece))

    chunks: list[ConversationChunk] = []
    current: list[tuple[int, MessageRole, str]] = []

    def flush() -> None:
        roles: list[MessageRole] = []
        for _, role, _ in current:
            if role not in roles:
                roles.append(role)
        chunks.append(
            ConversationChunk(
                text="\n".join(line for _, _, line in current),
                roles=roles,
                turn_count=len({index for index, _, _ in current}),
                chunk_index=len(chunks),
            )
        )

    for line in lines:
        if current and not _fits("\n".join([*(text for _, _, text in current), line[2]]), max_tokens):
            flush()
            current = []
        current.append(line)

    if current:
        flush()
    return chunks
