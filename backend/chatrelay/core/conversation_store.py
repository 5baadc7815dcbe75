"""
In-memory conversation logs keyed by user identifier
"""
import asyncio
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from chatrelay.core.logging_config import LoggingConfig

logger = LoggingConfig.get_logger(__name__)

ANONYMOUS_USER = "anonymous"

USER = "user"
ASSISTANT = "assistant"

# Wire aliases accepted from clients for the assistant role
_ROLE_ALIASES = {
    "user": USER,
    "human": USER,
    "assistant": ASSISTANT,
    "bot": ASSISTANT,
    "ai": ASSISTANT,
}


@dataclass(frozen=True)
class Turn:
    """One message in a conversation"""
    role: str
    text: str

    @classmethod
    def from_wire(cls, type_: str, text: str) -> "Turn":
        """Build a turn from the ``{type, text}`` shape used by the HTTP API"""
        role = _ROLE_ALIASES.get((type_ or "").strip().lower(), USER)
        return cls(role=role, text=text)

    def to_wire(self) -> Dict[str, str]:
        return {"type": self.role, "text": self.text}


class ConversationStore:
    """
    Process-local conversation logs.

    Logs are created on first access and only ever grow; nothing is persisted
    and nothing is evicted. ``lock(user_id)`` hands out one asyncio.Lock per
    identifier so a caller can make read-history-then-append atomic for that
    user without blocking other users.
    """

    def __init__(self):
        self._logs: Dict[str, List[Turn]] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    @staticmethod
    def _key(user_id: Optional[str]) -> str:
        return (user_id or "").strip() or ANONYMOUS_USER

    def get(self, user_id: Optional[str]) -> List[Turn]:
        """Get a copy of the user's log, creating an empty one on first access"""
        key = self._key(user_id)
        if key not in self._logs:
            self._logs[key] = []
            logger.debug(f"Created conversation log for {key}")
        return list(self._logs[key])

    def peek(self, user_id: Optional[str]) -> List[Turn]:
        """Like ``get`` but never creates a log"""
        return list(self._logs.get(self._key(user_id), ()))

    def append(self, user_id: Optional[str], turn: Turn) -> None:
        """Append one turn to the user's log"""
        self._logs.setdefault(self._key(user_id), []).append(turn)

    def extend(self, user_id: Optional[str], turns: Iterable[Turn]) -> None:
        """Append several turns in order"""
        self._logs.setdefault(self._key(user_id), []).extend(turns)

    def lock(self, user_id: Optional[str]) -> asyncio.Lock:
        """Per-identifier lock serializing turns of the same user"""
        key = self._key(user_id)
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    def __len__(self) -> int:
        return len(self._logs)


# Global store instance
_conversation_store: Optional[ConversationStore] = None


def get_conversation_store() -> ConversationStore:
    """Get global conversation store instance"""
    global _conversation_store
    if _conversation_store is None:
        _conversation_store = ConversationStore()
    return _conversation_store
