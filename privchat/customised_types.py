# Event names exchanged over the WebSocket channel


class ClientEventType:
    LOGIN = "login"
    GET_CHAT_HISTORY = "get-chat-history"
    SEND_MESSAGE = "send-message"
    TYPING = "typing"
    LOGOUT = "logout"


class ServerEventType:
    LOGIN_SUCCESS = "login-success"
    USERS_UPDATE = "users-update"
    USER_ONLINE = "user-online"
    USER_OFFLINE = "user-offline"
    CHAT_HISTORY = "chat-history"
    RECEIVE_MESSAGE = "receive-message"
    MESSAGE_SENT = "message-sent"
    USER_TYPING = "user-typing"
    ERROR = "error"


class ErrorCode:
    INVALID_NAME = "INVALID_NAME"
    NAME_TAKEN = "NAME_TAKEN"
    UNAUTHENTICATED = "UNAUTHENTICATED"
    USER_NOT_FOUND = "USER_NOT_FOUND"
    ALREADY_LOGGED_IN = "ALREADY_LOGGED_IN"
    BAD_REQUEST = "BAD_REQUEST"
    UNKNOWN_EVENT = "UNKNOWN_EVENT"
