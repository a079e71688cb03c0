# client -> server
CREATE_ROOM = "createRoom"
JOIN_ROOM = "joinRoom"
SEND_MESSAGE = "sendMessage"
TYPING = "typing"
STOP_TYPING = "stopTyping"
QUIT_ROOM = "quitRoom"

# server -> client
ROOM_CREATED = "roomCreated" # creator only
JOIN_SUCCESS = "joinSuccess" # joiner only
SYSTEM_MESSAGE = "systemMessage" # plain text
NEW_MESSAGE = "newMessage" # other occupants
SHOW_TYPING = "showTyping" # other occupants
HIDE_TYPING = "hideTyping" # other occupants

# systemMessage texts broadcast to a room
JOINED_NOTICE = "{name} joined."
LEFT_NOTICE = "{name} left."
OFFLINE_NOTICE = "{name} went offline."
EXPIRED_NOTICE = "⚠️ Room expired."
SESSION_MOVED_NOTICE = "Your session was resumed on another connection."
UNKNOWN_EVENT_NOTICE = "Unknown event: {event}"
