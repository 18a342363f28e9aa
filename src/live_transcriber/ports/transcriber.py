from dataclasses import dataclass
from typing import AsyncIterator, Literal, Protocol

from live_transcriber.domain.events import ChannelEvent


@dataclass(frozen=True)
class TranscriptionOptions:
    sample_rate: int = 16000
    channels: int = 1
    encoding: Literal["linear16"] = "linear16"
    language: str = "en-GB"
    punctuate: bool = True
    diarize: bool = True
    model: str = "nova-2"


class TranscriptionChannelPort(Protocol):
    async def open(self, options: TranscriptionOptions) -> None: ...
    async def send(self, chunk: bytes) -> None: ...
    async def keep_alive(self) -> None: ...
    async def stop(self) -> None: ...
    async def finalize(self) -> None: ...
    def events(self) -> AsyncIterator[ChannelEvent]: ...
    def close(self) -> None: ...
