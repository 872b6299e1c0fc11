import uuid
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Optional

DEFAULT_HISTORY_LIMIT = 50


def conversation_id(user_a: str, user_b: str) -> str:
    return "_".join(sorted((user_a, user_b)))


def format_timestamp(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace(
        "+00:00", "Z"
    )


@dataclass(frozen=True)
class Message:
    id: str
    sender_id: str
    sender_name: str
    recipient_id: str
    recipient_name: str
    body: str
    sent_at: datetime

    @classmethod
    def create(
        cls,
        sender_id: str,
        sender_name: str,
        recipient_id: str,
        recipient_name: str,
        body: str,
        sent_at: Optional[datetime] = None,
    ) -> "Message":
        return cls(
            id=f"msg_{uuid.uuid4().hex}",
            sender_id=sender_id,
            sender_name=sender_name,
            recipient_id=recipient_id,
            recipient_name=recipient_name,
            body=body.strip(),
            sent_at=sent_at or datetime.now(timezone.utc),
        )

    @property
    def timestamp(self) -> str:
        return format_timestamp(self.sent_at)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "senderId": self.sender_id,
            "senderName": self.sender_name,
            "recipientId": self.recipient_id,
            "recipientName": self.recipient_name,
            "message": self.body,
            "timestamp": self.timestamp,
        }


class ConversationStore:
    """Per-pair, append-only message history.

    ``max_retained`` caps each conversation; 0 or None keeps everything.
    """

    def __init__(self, max_retained: Optional[int] = None):
        self.max_retained = max_retained if max_retained and max_retained > 0 else None
        self._conversations: Dict[str, Deque[Message]] = {}

    def append(self, user_a: str, user_b: str, message: Message) -> None:
        key = conversation_id(user_a, user_b)
        if key not in self._conversations:
            self._conversations[key] = deque(maxlen=self.max_retained)
        self._conversations[key].append(message)

    def history(
        self, user_a: str, user_b: str, limit: Optional[int] = DEFAULT_HISTORY_LIMIT
    ) -> List[Message]:
        if not isinstance(limit, int) or isinstance(limit, bool) or limit <= 0:
            limit = DEFAULT_HISTORY_LIMIT
        messages = self._conversations.get(conversation_id(user_a, user_b))
        if not messages:
            return []
        return list(messages)[-limit:]

    def latest(self, user_a: str, user_b: str) -> Optional[Message]:
        messages = self._conversations.get(conversation_id(user_a, user_b))
        return messages[-1] if messages else None

    def total_messages(self) -> int:
        return sum(len(m) for m in self._conversations.values())
