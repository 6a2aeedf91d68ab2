# Relay protocol constants (message types, field names, error texts)

# Inbound message types
T_JOIN = "join"
T_LEAVE = "leave"
T_MESSAGE = "message"
T_REACTION = "reaction"
T_TYPING = "typing"
T_PRESENCE_REQUEST = "presence_request"

# Outbound-only event types. "message", "reaction" and "typing" are shared
# with the inbound names above.
T_SYSTEM = "system"
T_ERROR = "error"
T_PRESENCE = "presence"
T_USER_JOINED = "user_joined"
T_USER_LEFT = "user_left"

# Envelope fields
F_TYPE = "type"
F_ROOM = "room"
F_SENDER = "sender"
F_CONTENT = "content"
F_REPLY = "reply"
F_TIMESTAMP = "timestamp"
F_TARGET = "target"
F_EMOJI = "emoji"
F_TYPING = "typing"
F_TYPING_USERS = "typingUsers"
F_USERS = "users"
F_MESSAGE = "message"
F_REASON = "reason"

# Error texts and reason codes
ERR_INVALID_FORMAT = "Invalid {label}"
ERR_UNKNOWN_TYPE = "Unknown message type"
REASON_DUPLICATE_LOGIN = "duplicate_login"

# System acknowledgements
SYS_JOINED = "Joined room: {room}"
SYS_LEFT = "Left room: {room}"

IDENTITY_MAX_CHARS = 32
