from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

AudioSink = Callable[[bytes], None]


@dataclass(frozen=True)
class AudioDevice:
    index: int
    name: str
    max_input_channels: int = 1


class CaptureSourcePort(Protocol):
    """Audio input device delivering linear16 PCM chunks to a sink.

    The sink is invoked from the device driver's own thread, never from the
    event loop that called ``start``.
    """

    async def start(self, device_index: int, sample_rate: int, sink: AudioSink) -> None: ...
    async def stop(self) -> None: ...
    def close(self) -> None: ...
    def list_devices(self) -> list[AudioDevice]: ...
