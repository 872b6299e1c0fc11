import asyncio
import dataclasses
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Hashable, List, Optional

from .bindings import ChannelState, ConnectionBindings
from .customised_types import ClientEventType, ServerEventType
from .errors import (
    AlreadyLoggedIn,
    BadRequest,
    PrivchatError,
    Unauthenticated,
    UnknownEvent,
    UserNotFound,
)
from .protocol import SERVER_ID, make_envelope
from .registry import IdentityRegistry, User
from .store import DEFAULT_HISTORY_LIMIT, ConversationStore, Message

logger = logging.getLogger(__name__)

Sender = Callable[[str], Awaitable[Any]]


class Outbox:
    """Outbound frames for one channel, written in order by its own task."""

    def __init__(self, sender: Sender):
        self.sender = sender
        self.queue: "asyncio.Queue[tuple[str, str, str]]" = asyncio.Queue()
        self._send_task = asyncio.create_task(self._send_loop())

    def put(self, event_type: str, who: str, raw: str) -> None:
        self.queue.put_nowait((event_type, who, raw))

    async def _send_loop(self) -> None:
        while True:
            event_type, who, raw = await self.queue.get()
            try:
                await self.sender(raw)
            except Exception as e:
                logger.warning("Failed to send %s to %s: %s", event_type, who, e)
            finally:
                self.queue.task_done()

    async def close(self) -> None:
        self._send_task.cancel()
        try:
            await self._send_task
        except asyncio.CancelledError:
            pass


class Coordinator:
    """Presence and routing for direct messages.

    Every inbound event runs to completion under ``self.lock``, so the
    registry, bindings and store only ever see one mutation sequence at a
    time. Handlers never await while holding the lock: frames are queued on
    each channel's ``Outbox`` and written by that channel's task, so a
    channel that stops reading only stalls itself.
    """

    def __init__(
        self,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        max_retained: Optional[int] = None,
    ):
        self.history_limit = history_limit
        self._registry = IdentityRegistry()
        self._bindings = ConnectionBindings()
        self._store = ConversationStore(max_retained=max_retained)
        # Every attached channel, authenticated or not
        self._channels: Dict[Hashable, Outbox] = {}
        self.lock = asyncio.Lock()

    # --- channel lifecycle ---

    def connect(self, handle: Hashable, sender: Sender) -> None:
        self._channels[handle] = Outbox(sender)

    async def disconnect(self, handle: Hashable) -> None:
        async with self.lock:
            outbox = self._channels.pop(handle, None)
            user_id = self._bindings.resolve(handle)
            if user_id:
                logger.info("User disconnected: %s", self._name(user_id))
            self._release(handle)
        if outbox:
            await outbox.close()

    async def flush(self) -> None:
        """Wait until every frame queued so far has been handed to its channel."""
        await asyncio.gather(*(o.queue.join() for o in list(self._channels.values())))

    async def close(self) -> None:
        outboxes = list(self._channels.values())
        self._channels.clear()
        for outbox in outboxes:
            await outbox.close()

    def channel_state(self, handle: Hashable) -> ChannelState:
        return self._bindings.state(handle)

    # --- registration and read-only views ---

    async def register(self, display_name: str) -> Dict[str, Any]:
        async with self.lock:
            user_id = self._registry.register(display_name)
            return self._registry.get(user_id).summary()

    def user(self, user_id: str) -> Optional[User]:
        user = self._registry.get(user_id)
        return dataclasses.replace(user) if user else None

    def list_users(self) -> List[Dict[str, Any]]:
        return self._registry.list_all()

    def online_users(self, excluding: Optional[str] = None) -> List[Dict[str, Any]]:
        return self._registry.list_online(excluding)

    def history(self, user_a: str, user_b: str, limit: Optional[int] = None) -> List[Message]:
        return self._store.history(user_a, user_b, limit or self.history_limit)

    def stats(self) -> Dict[str, int]:
        return {
            "onlineUsers": len(self._registry.list_online()),
            "registeredUsers": len(self._registry),
            "connections": len(self._channels),
            "totalMessages": self._store.total_messages(),
        }

    # --- inbound events ---

    async def handle_event(self, handle: Hashable, event_type: Any, payload: Any = None) -> None:
        async with self.lock:
            try:
                if payload is None:
                    payload = {}
                if not isinstance(payload, dict):
                    raise BadRequest("Payload must be a JSON object")
                self._dispatch(handle, event_type, payload)
            except PrivchatError as e:
                logger.info("Rejected %s from %s: %s", event_type, self._who(handle), e.detail)
                self._send(handle, ServerEventType.ERROR, e.to_payload())
            except Exception:
                logger.exception("Error handling %s from %s", event_type, self._who(handle))

    def report(self, handle: Hashable, error: PrivchatError) -> None:
        self._send(handle, ServerEventType.ERROR, error.to_payload())

    def _dispatch(self, handle: Hashable, event_type: Any, payload: Dict[str, Any]) -> None:
        if event_type == ClientEventType.LOGIN:
            self._handle_login(handle, payload)
        elif event_type == ClientEventType.GET_CHAT_HISTORY:
            self._handle_get_history(handle, payload)
        elif event_type == ClientEventType.SEND_MESSAGE:
            self._handle_send_message(handle, payload)
        elif event_type == ClientEventType.TYPING:
            self._handle_typing(handle, payload)
        elif event_type == ClientEventType.LOGOUT:
            self._handle_logout(handle)
        else:
            raise UnknownEvent(f"Unknown event: {event_type}")

    def _handle_login(self, handle: Hashable, payload: Dict[str, Any]) -> None:
        user_id = payload.get("userId")
        if not isinstance(user_id, str) or not user_id:
            raise BadRequest("userId is required")
        user = self._registry.get(user_id)
        if user is None:
            raise UserNotFound()

        current = self._bindings.resolve(handle)
        if current == user_id:
            self._send(handle, ServerEventType.LOGIN_SUCCESS, user.summary(), to_id=user_id)
            return
        if user.online:
            raise AlreadyLoggedIn()
        if current:
            # Channel switches identity: the previous user goes offline first
            logger.info("User logged out: %s", self._name(current))
            self._release(handle, exclude=handle)

        self._bindings.bind(handle, user_id)
        self._registry.set_online(user_id, handle)
        logger.info("User logged in: %s (%s)", user.username, user_id)

        self._send(handle, ServerEventType.LOGIN_SUCCESS, user.summary(), to_id=user_id)
        self._broadcast(ServerEventType.USERS_UPDATE, {"users": self._registry.list_online()})
        self._broadcast(ServerEventType.USER_ONLINE, user.summary(), exclude=handle)

    def _handle_get_history(self, handle: Hashable, payload: Dict[str, Any]) -> None:
        user_id = self._bindings.resolve(handle)
        if not user_id:
            return
        other_id = payload.get("otherUserId")
        if not isinstance(other_id, str):
            raise BadRequest("otherUserId is required")
        limit = payload.get("limit")
        messages = self._store.history(user_id, other_id, limit if limit else self.history_limit)
        self._send(
            handle,
            ServerEventType.CHAT_HISTORY,
            {"otherUserId": other_id, "messages": [m.to_dict() for m in messages]},
            to_id=user_id,
        )

    def _handle_send_message(self, handle: Hashable, payload: Dict[str, Any]) -> None:
        sender_id = self._bindings.resolve(handle)
        if not sender_id:
            raise Unauthenticated()
        recipient_id = payload.get("recipientId")
        recipient = self._registry.get(recipient_id) if isinstance(recipient_id, str) else None
        if recipient is None:
            raise UserNotFound("Recipient not found")
        body = payload.get("message")
        if not isinstance(body, str):
            raise BadRequest("message must be a string")

        sender = self._registry.get(sender_id)
        sent_at = datetime.now(timezone.utc)
        latest = self._store.latest(sender_id, recipient_id)
        if latest and latest.sent_at > sent_at:
            sent_at = latest.sent_at
        message = Message.create(
            sender_id=sender_id,
            sender_name=sender.username,
            recipient_id=recipient_id,
            recipient_name=recipient.username,
            body=body,
            sent_at=sent_at,
        )
        self._store.append(sender_id, recipient_id, message)
        logger.info("Message: %s -> %s", sender.username, recipient.username)

        data = message.to_dict()
        if recipient.online:
            self._send(recipient.connection, ServerEventType.RECEIVE_MESSAGE, data,
                       from_id=sender_id, to_id=recipient_id)
        self._send(handle, ServerEventType.MESSAGE_SENT, data, to_id=sender_id)

    def _handle_typing(self, handle: Hashable, payload: Dict[str, Any]) -> None:
        sender_id = self._bindings.resolve(handle)
        if not sender_id:
            return
        is_typing = payload.get("isTyping", False)
        if not isinstance(is_typing, bool):
            raise BadRequest("isTyping must be a boolean")
        recipient_id = payload.get("recipientId")
        recipient = self._registry.get(recipient_id) if isinstance(recipient_id, str) else None
        if recipient is None or not recipient.online:
            return
        self._send(
            recipient.connection,
            ServerEventType.USER_TYPING,
            {"userId": sender_id, "isTyping": is_typing},
            from_id=sender_id,
            to_id=recipient_id,
        )

    def _handle_logout(self, handle: Hashable) -> None:
        user_id = self._bindings.resolve(handle)
        if user_id:
            logger.info("User logged out: %s", self._name(user_id))
        self._release(handle, exclude=handle)

    # --- helpers (call with self.lock held) ---

    def _release(self, handle: Hashable, exclude: Optional[Hashable] = None) -> None:
        user_id = self._bindings.resolve(handle)
        self._bindings.unbind(handle)
        if not user_id:
            return
        user = self._registry.get(user_id)
        if user is None or user.connection != handle:
            return
        self._registry.set_offline(user_id)
        self._broadcast(ServerEventType.USER_OFFLINE, user.summary(), exclude=exclude)
        self._broadcast(ServerEventType.USERS_UPDATE, {"users": self._registry.list_online()})

    def _send(
        self,
        handle: Hashable,
        event_type: str,
        payload: Dict[str, Any],
        from_id: str = SERVER_ID,
        to_id: Optional[str] = None,
    ) -> None:
        outbox = self._channels.get(handle)
        if outbox is None:
            return
        outbox.put(event_type, self._who(handle), make_envelope(event_type, from_id, to_id, payload))

    def _broadcast(
        self, event_type: str, payload: Dict[str, Any], exclude: Optional[Hashable] = None
    ) -> None:
        for handle in list(self._channels):
            if exclude is not None and handle == exclude:
                continue
            self._send(handle, event_type, payload, to_id="*")

    def _name(self, user_id: str) -> str:
        user = self._registry.get(user_id)
        return f"{user.username} ({user_id})" if user else user_id

    def _who(self, handle: Hashable) -> str:
        user_id = self._bindings.resolve(handle)
        return self._name(user_id) if user_id else "anonymous channel"
