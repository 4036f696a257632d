# client -> server
CREATE_ROOM = "create-room"
JOIN_ROOM = "join-room"
LEAVE_ROOM = "leave-room"
PLAY = "play"
PAUSE = "pause"
SEEK = "seek"
TIME_REPORT = "time-report"
TOGGLE_SUBTITLES = "toggle-subtitles"
SELECT_VIDEO = "select-video"
CHAT_MESSAGE = "chat-message"
SEND_REACTION = "send-reaction"
HEARTBEAT = "heartbeat"
PING = "ping"

# server -> client
ROOM_CREATED = "room-created"
ROOM_JOINED = "room-joined"
ROOM_STATE_UPDATE = "room-state-update"
PARTICIPANT_JOINED = "participant-joined"
PARTICIPANT_LEFT = "participant-left"
PARTICIPANT_INACTIVE = "participant-inactive"
VIDEO_PLAYED = "video-played"
VIDEO_PAUSED = "video-paused"
VIDEO_SEEKED = "video-seeked"
SUBTITLES_TOGGLED = "subtitles-toggled"
MESSAGE_RECEIVED = "message-received"
CHAT_HISTORY = "chat-history"
REACTION_RECEIVED = "reaction-received"
ROOM_DELETED = "room-deleted"
ERROR = "error"
FATAL_ERROR = "fatal-error"
PONG = "pong"
