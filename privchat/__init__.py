from .coordinator import Coordinator
from .registry import IdentityRegistry
from .store import ConversationStore, Message

__all__ = ["Coordinator", "IdentityRegistry", "ConversationStore", "Message"]
