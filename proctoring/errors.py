class ProctoringError(Exception):
    """Base class for proctoring failures."""


class CaptureError(ProctoringError):
    """Camera or microphone unavailable or denied. Fatal to starting a session."""


class UnsupportedFormatError(ProctoringError):
    """No candidate recording format is supported on this machine."""


class UploadError(ProctoringError):
    """Recording upload or attach failed after stop. The session stays valid."""


class UplinkError(ProctoringError):
    """Event batch was not accepted by the backend."""


class SessionNotFoundError(ProctoringError):
    def __init__(self, session_id: str):
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id
