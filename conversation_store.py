"""Append-only conversation log with display and submission views.

Turns are tagged with a TurnKind so UI-only entries (the "Listening..."
placeholder, feature markers, acknowledgements) can be dropped from what is
sent to the model without comparing message text.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional


class Role(str, Enum):
    USER = "user"
    MODEL = "model"


class TurnKind(Enum):
    CONTENT = "content"                # Real conversation content
    PLACEHOLDER = "placeholder"        # Transient UI entry, e.g. "Listening..."
    FEATURE_MARKER = "feature_marker"  # Feature initiation / acknowledgement


@dataclass(frozen=True)
class Turn:
    """A single message in the conversation."""
    role: Role
    text: str
    kind: TurnKind = TurnKind.CONTENT

    @property
    def is_marker(self) -> bool:
        return self.kind is not TurnKind.CONTENT


class ConversationStore:
    """Ordered log of turns, seeded so it is never empty.

    Args:
        seed: Turns the log starts with (normally the greeting).
    """

    def __init__(self, seed: Iterable[Turn]):
        self._turns: list[Turn] = list(seed)
        if not self._turns:
            raise ValueError("ConversationStore needs at least one seed turn")

    def append(self, turn: Turn) -> None:
        self._turns.append(turn)

    def replace_all(self, turns: Iterable[Turn]) -> None:
        """Reset the log. Only used when the conversation is cleared."""
        turns = list(turns)
        if not turns:
            raise ValueError("ConversationStore cannot be reset to an empty log")
        self._turns = turns

    def remove_placeholders(self) -> int:
        """Drop transient placeholder turns. Returns how many were removed."""
        before = len(self._turns)
        self._turns = [t for t in self._turns if t.kind is not TurnKind.PLACEHOLDER]
        return before - len(self._turns)

    def snapshot_for_display(self) -> list[Turn]:
        return list(self._turns)

    def snapshot_for_submission(self) -> list[Turn]:
        """Content turns only, in order. Never contains a placeholder or marker."""
        return [t for t in self._turns if not t.is_marker]

    def last_user_content(self) -> Optional[Turn]:
        """Most recent user turn that carries real content, if any."""
        for turn in reversed(self._turns):
            if turn.role is Role.USER and not turn.is_marker:
                return turn
        return None

    def __len__(self) -> int:
        return len(self._turns)

    def __iter__(self):
        return iter(list(self._turns))
