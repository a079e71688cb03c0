class RelayError(Exception):
    """Recoverable error reported back to the offending client as a systemMessage."""

    default_message = "Request failed."

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class RoomNotFound(RelayError):
    default_message = "Invalid or expired passcode."


class RoomFull(RelayError):
    default_message = "Room is full."


class InvalidMessage(RelayError):
    default_message = "Message cannot be empty."


class NotInRoom(RelayError):
    default_message = "You are not in a room."


class InvalidRequest(RelayError):
    default_message = "Malformed request."
