from enum import Enum
from typing import Dict, Hashable, Optional


class ChannelState(Enum):
    ANONYMOUS = "anonymous"
    AUTHENTICATED = "authenticated"


class ConnectionBindings:
    """Channel handle -> user id currently authenticated on it."""

    def __init__(self):
        self._bindings: Dict[Hashable, str] = {}

    def __len__(self) -> int:
        return len(self._bindings)

    def bind(self, handle: Hashable, user_id: str) -> None:
        self._bindings[handle] = user_id

    def resolve(self, handle: Hashable) -> Optional[str]:
        return self._bindings.get(handle)

    def unbind(self, handle: Hashable) -> None:
        self._bindings.pop(handle, None)

    def state(self, handle: Hashable) -> ChannelState:
        if handle in self._bindings:
            return ChannelState.AUTHENTICATED
        return ChannelState.ANONYMOUS
