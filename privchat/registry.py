import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Hashable, List, Optional

from .errors import InvalidName, NameTaken

logger = logging.getLogger(__name__)

MIN_NAME_LENGTH = 2
MAX_NAME_LENGTH = 20


@dataclass
class User:
    user_id: str
    username: str
    connection: Optional[Hashable] = None
    created_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    @property
    def online(self) -> bool:
        # Derived from the handle so the two can never disagree
        return self.connection is not None

    def summary(self) -> Dict[str, Any]:
        return {"userId": self.user_id, "username": self.username}


class IdentityRegistry:
    """Append-only map of user id -> profile and presence."""

    def __init__(self):
        # dicts keep insertion order, which doubles as registration order
        self._users: Dict[str, User] = {}

    def __len__(self) -> int:
        return len(self._users)

    def generate_user_id(self) -> str:
        return f"user_{uuid.uuid4().hex}"

    def register(self, display_name: str) -> str:
        username = (display_name or "").strip()
        if len(username) < MIN_NAME_LENGTH or len(username) > MAX_NAME_LENGTH:
            raise InvalidName()
        folded = username.casefold()
        if any(u.username.casefold() == folded for u in self._users.values()):
            raise NameTaken()

        user_id = self.generate_user_id()
        while user_id in self._users:
            user_id = self.generate_user_id()
        self._users[user_id] = User(user_id=user_id, username=username)
        logger.info("Registered %s as %s", username, user_id)
        return user_id

    def exists(self, user_id: str) -> bool:
        return user_id in self._users

    def get(self, user_id: str) -> Optional[User]:
        return self._users.get(user_id)

    def set_online(self, user_id: str, connection: Hashable) -> bool:
        user = self._users.get(user_id)
        if user is None:
            return False
        user.connection = connection
        return True

    def set_offline(self, user_id: str) -> None:
        user = self._users.get(user_id)
        if user is not None:
            user.connection = None

    def list_online(self, excluding: Optional[str] = None) -> List[Dict[str, Any]]:
        return [
            u.summary()
            for u in self._users.values()
            if u.online and u.user_id != excluding
        ]

    def list_all(self) -> List[Dict[str, Any]]:
        return [
            {"userId": u.user_id, "username": u.username, "online": u.online}
            for u in self._users.values()
        ]
