from dataclasses import dataclass, field
from time import time


@dataclass(frozen=True)
class TranscriptAlternative:
    text: str
    confidence: float = 0.0
    speaker: int | None = None


@dataclass(frozen=True)
class ChannelEvent:
    timestamp: float = field(default_factory=time)


@dataclass(frozen=True)
class ConnectionEvent(ChannelEvent):
    pass


@dataclass(frozen=True)
class ConnectionOpened(ConnectionEvent):
    pass


@dataclass(frozen=True)
class ConnectionClosed(ConnectionEvent):
    pass


@dataclass(frozen=True)
class ConnectionErrored(ConnectionEvent):
    message: str = ""


@dataclass(frozen=True)
class TranscriptReceived(ChannelEvent):
    is_final: bool = False
    alternatives: tuple[TranscriptAlternative, ...] = ()

    def spoken_alternatives(self) -> list[TranscriptAlternative]:
        return [alt for alt in self.alternatives if alt.text]
