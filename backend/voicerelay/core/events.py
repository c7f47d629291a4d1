# Voice panel notice types, delivered to the panel's notify callback

VOICE_JOINED = "voice.joined"
VOICE_LEFT = "voice.left"
VOICE_MUTED = "voice.muted"
VOICE_UNMUTED = "voice.unmuted"

VOICE_JOIN_FAILED = "voice.join_failed"
VOICE_LEAVE_FAILED = "voice.leave_failed"

# Steady-state polling (retriable banner)
VOICE_SYNC_FAILED = "voice.sync_failed"
VOICE_SYNC_RESTORED = "voice.sync_restored"
