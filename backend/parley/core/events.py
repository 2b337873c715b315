# Realtime event names.  Clients match on these exact strings.

# Channel messages
MESSAGE_NEW = "new-message"

# Direct messages
DM_RECEIVED = "dm-received"
DM_SENT = "dm-sent"
DM_USER_TYPING = "dm-user-typing"
DM_USER_STOPPED_TYPING = "dm-user-stopped-typing"
DM_READ = "dm-read"
DM_EDITED = "dm-edited"
DM_DELETED = "dm-deleted"

# Membership & moderation: server-room broadcast / personal notice pairs
MEMBER_JOINED = "member-joined"
MEMBER_KICKED = "member-kicked"
KICKED_FROM_SERVER = "kicked-from-server"
MEMBER_BANNED = "member-banned"
BANNED_FROM_SERVER = "banned-from-server"
MEMBER_TIMEOUT = "member-timeout"
TIMEOUT_APPLIED = "timeout-applied"
MEMBER_WARNED = "member-warned"
WARNING_RECEIVED = "warning-received"

# Presence
USER_STATUS_UPDATED = "user-status-updated"
FRIEND_STATUS_UPDATED = "friend-status-updated"

# Social
FRIEND_REQUEST_RECEIVED = "friend-request-received"
FRIEND_REQUEST_ACCEPTED = "friend-request-accepted"
FRIEND_REQUEST_DECLINED = "friend-request-declined"
FRIEND_REMOVED = "friend-removed"

# Voice / WebRTC signaling
VOICE_USER_JOINED = "voice-user-joined"
VOICE_USER_LEFT = "voice-user-left"
VOICE_STATE_UPDATE = "voice-state-update"
WEBRTC_SIGNAL = "webrtc-signal"
DM_CALL_INCOMING = "dm-call-incoming"
DM_CALL_ACCEPTED = "dm-call-accepted"
DM_CALL_DECLINED = "dm-call-declined"
DM_CALL_ENDED = "dm-call-ended"

SIGNAL_TYPES = ("offer", "answer", "ice-candidate")

# Client → server websocket frames
CLIENT_AUTH = "auth"
CLIENT_JOIN_CHANNEL = "join-channel"
CLIENT_LEAVE_CHANNEL = "leave-channel"
CLIENT_DM_TYPING_START = "dm-typing-start"
CLIENT_DM_TYPING_STOP = "dm-typing-stop"
CLIENT_UPDATE_STATUS = "update-status"
CLIENT_HEARTBEAT = "presence-heartbeat"

# Server → client acknowledgements on the socket itself
AUTHENTICATED = "authenticated"
CHANNEL_JOINED = "channel-joined"
CHANNEL_LEFT = "channel-left"
ERROR = "error"


# ── Rooms ─────────────────────────────────────────────────────────────────────


def user_room(user_id: int) -> str:
    return f"user:{user_id}"


def server_room(server_id: int) -> str:
    return f"server:{server_id}"


def channel_room(channel_id: int) -> str:
    return f"channel:{channel_id}"
