import os

ROOM_TTL_SECONDS = float(os.getenv("ROOM_TTL_SECONDS", 600))
DISCONNECT_GRACE_SECONDS = float(os.getenv("DISCONNECT_GRACE_SECONDS", 6))
SWEEP_INTERVAL_SECONDS = float(os.getenv("SWEEP_INTERVAL_SECONDS", 60))
DELETE_EMPTY_ROOMS = os.getenv("DELETE_EMPTY_ROOMS", "true").lower() in ("1", "true", "yes")

MAX_MESSAGE_LENGTH = int(os.getenv("MAX_MESSAGE_LENGTH", 65536))
MAX_NAME_LENGTH = int(os.getenv("MAX_NAME_LENGTH", 32))

MAX_OCCUPANTS = 2
PASSCODE_MIN = 100000
PASSCODE_MAX = 999999
DEFAULT_DISPLAY_NAME = "Anonymous"

CORS_ORIGINS = [origin.strip() for origin in os.getenv("CORS_ORIGINS", "*").split(",") if origin.strip()]
