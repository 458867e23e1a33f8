from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Protocol, runtime_checkable


@dataclass(frozen=True)
class InboundEvent:
    user_id: str
    chat_id: int
    text: str
    is_command: bool = False
    command: str = ""
    args: str = ""
    message_id: int | None = None


def parse_inbound_text(text: str) -> tuple[bool, str, str]:
    """Split ``/command@bot args`` into ``(is_command, command, args)``."""
    trimmed = text.strip()
    if not trimmed.startswith("/"):
        return False, "", trimmed
    parts = trimmed.split(maxsplit=1)
    command = parts[0][1:].split("@", 1)[0].lower()
    args = parts[1].strip() if len(parts) > 1 else ""
    return True, command, args


@runtime_checkable
class MessagingTransport(Protocol):
    async def create_message(self, chat_id: int, text: str) -> int:
        """Send a new message and return its id. Raises ``TransportError``."""
        ...

    async def edit_message(self, chat_id: int, message_id: int, text: str) -> None:
        """Replace the text of a sent message. Raises ``TransportError``."""
        ...

    def updates(self) -> AsyncIterator[InboundEvent]:
        """Yield inbound messages until the transport is closed."""
        ...
