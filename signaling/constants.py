DEFAULT_TOKEN_EXPIRE_SECONDS = 3600
MAX_TOKEN_EXPIRE_SECONDS = 86400

ROLE_PUBLISHER = 1

# Participant roles accepted by call/end
ROLE_CALLER = "caller"
ROLE_CALLEE = "callee"

NOTIFICATION_TYPE_INCOMING_CALL = "incoming_call"
RING_TITLE = "Incoming Call"

# Registrations with this platform and a voipToken ring through APNs VoIP
PLATFORM_IOS = "ios"

# FCM INVALID_ARGUMENT errors about the device token carry this phrase
FCM_INVALID_TOKEN_MARKER = "registration token"

# Transport error codes meaning the device token is dead, not the transport
STALE_TOKEN_ERROR_CODES = frozenset({"UNREGISTERED", "BAD_DEVICE_TOKEN"})

# Characters the Realtime Database refuses in a path segment
INVALID_KEY_CHARACTERS = frozenset(".$#[]/")
