"""Exceptions raised by the realtime chat core."""


class ChatError(Exception):
    """Base exception for realtime chat errors."""
    pass


class FrameError(ChatError):
    """A wire frame could not be accepted."""
    pass


class MalformedFrameError(FrameError):
    """Raised when raw data is not a valid frame."""
    pass


class UnknownFrameTypeError(FrameError):
    """Raised when a frame names a type outside the protocol."""

    def __init__(self, frame_type: str):
        super().__init__(f"Unknown message type: {frame_type}")
        self.frame_type = frame_type


class FrameNotAllowedError(FrameError):
    """Raised when a known frame type arrives through a path that may not carry it."""
    pass


class ConnectionClosedError(ChatError):
    """Raised when sending to a connection whose transport is gone."""
    pass


class AuthError(ChatError):
    """Base exception for handshake rejections."""
    pass


class AuthenticationError(AuthError):
    """Credential missing, invalid, expired, or issued to someone else."""
    pass


class AuthorizationError(AuthError):
    """Authenticated user is not a member of the requested couple."""
    pass
