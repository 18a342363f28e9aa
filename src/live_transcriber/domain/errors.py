class TranscriptionError(Exception):
    pass


class ConnectionFailedError(TranscriptionError, ConnectionError):
    """The channel handshake did not complete; the session was never started."""


class TransportError(TranscriptionError):
    """A send or receive failed on an open channel."""


class NotConnectedError(TranscriptionError):
    def __init__(self, message: str = "Transcription channel is not open") -> None:
        super().__init__(message)


class DeviceBusyError(TranscriptionError):
    def __init__(self, device_index: int) -> None:
        super().__init__(f"Capture device {device_index} is already in use by another session")
        self.device_index = device_index


class NoInputDeviceError(TranscriptionError):
    def __init__(self) -> None:
        super().__init__("There are no active audio input devices in your system")
