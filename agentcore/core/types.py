"""Core conversation types for agentcore.

Messages are frozen dataclasses: the token count is computed once, when the
message enters a context window, and never recomputed.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from agentcore.core.errors import ValidationError


class Role(str, Enum):
    """Message role in a conversation."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"

    @classmethod
    def parse(cls, value: "Role | str") -> "Role":
        """Coerce a role name into a Role.

        Raises:
            ValidationError: If the value is not a known role.
        """
        if isinstance(value, Role):
            return value
        try:
            return cls(str(value).lower())
        except ValueError as e:
            allowed = ", ".join(r.value for r in cls)
            raise ValidationError(
                f"Invalid message role {value!r} (expected one of: {allowed})"
            ) from e


@dataclass(frozen=True)
class Message:
    """A message in a conversation.

    Attributes:
        role: The role of the message sender.
        content: The text content of the message.
        timestamp: When the message was created.
        token_count: Estimated token cost, including role framing.
    """

    role: Role
    content: str
    timestamp: datetime = field(default_factory=datetime.now)
    token_count: int = 0

    def to_payload(self) -> dict[str, Any]:
        """Return the chat-API form ``{"role": ..., "content": ...}``."""
        return {"role": self.role.value, "content": self.content}
