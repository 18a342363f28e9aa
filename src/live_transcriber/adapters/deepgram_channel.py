import asyncio
import json
import logging
from collections.abc import AsyncIterator
from typing import Any

from deepgram import AsyncDeepgramClient
from deepgram.extensions.types.sockets.listen_v1_results_event import ListenV1ResultsEvent
from deepgram.listen.v1.socket_client import EventType

from live_transcriber.domain.errors import ConnectionFailedError, NotConnectedError, TransportError
from live_transcriber.domain.events import (
    ChannelEvent,
    ConnectionClosed,
    ConnectionErrored,
    ConnectionOpened,
    TranscriptAlternative,
    TranscriptReceived,
)
from live_transcriber.ports.transcriber import TranscriptionOptions

logger = logging.getLogger(__name__)

KEEPALIVE_MESSAGE = json.dumps({"type": "KeepAlive"})
CLOSE_STREAM_MESSAGE = json.dumps({"type": "CloseStream"})


def _flag(value: bool) -> str:
    return "true" if value else "false"


def connect_params(options: TranscriptionOptions) -> dict[str, str]:
    """Query parameters for the live listen endpoint."""
    return {
        "model": options.model,
        "language": options.language,
        "encoding": options.encoding,
        "sample_rate": str(options.sample_rate),
        "channels": str(options.channels),
        "punctuate": _flag(options.punctuate),
        "diarize": _flag(options.diarize),
    }


def results_to_event(message: Any) -> TranscriptReceived:
    """Translate a listen results message into a transcript event.

    Alternatives keep the recognizer's ranking. The speaker label is taken
    from the first diarized word, when diarization produced one.
    """
    alternatives = []
    for alt in message.channel.alternatives:
        speaker = None
        for word in getattr(alt, "words", None) or []:
            word_speaker = getattr(word, "speaker", None)
            if word_speaker is not None:
                speaker = int(word_speaker)
                break
        alternatives.append(
            TranscriptAlternative(
                text=alt.transcript or "",
                confidence=float(alt.confidence or 0.0),
                speaker=speaker,
            )
        )
    return TranscriptReceived(
        is_final=bool(message.is_final),
        alternatives=tuple(alternatives),
    )


class DeepgramLiveChannel:
    """Transcription channel over the Deepgram live listen websocket."""

    def __init__(self, api_key: str) -> None:
        self._api_key = api_key
        self._socket = None
        self._context_manager = None
        self._listener_task: asyncio.Task | None = None
        self._event_queue: asyncio.Queue[ChannelEvent | None] = asyncio.Queue()

    @property
    def is_open(self) -> bool:
        return self._socket is not None

    async def open(self, options: TranscriptionOptions) -> None:
        if self._socket is not None:
            raise ConnectionFailedError("Deepgram channel is already open")

        client = AsyncDeepgramClient(api_key=self._api_key)
        self._context_manager = client.listen.v1.connect(**connect_params(options))
        try:
            self._socket = await self._context_manager.__aenter__()
        except Exception as exc:
            self._context_manager = None
            raise ConnectionFailedError(f"Deepgram handshake failed: {exc}") from exc

        self._event_queue = asyncio.Queue()
        self._socket.on(EventType.OPEN, self._on_open)
        self._socket.on(EventType.MESSAGE, self._on_message)
        self._socket.on(EventType.CLOSE, self._on_close)
        self._socket.on(EventType.ERROR, self._on_error)
        self._listener_task = asyncio.create_task(self._socket.start_listening())
        logger.info(
            "Deepgram channel opened (model=%s, language=%s, rate=%d)",
            options.model, options.language, options.sample_rate,
        )

    async def send(self, chunk: bytes) -> None:
        await self._send(chunk)

    async def keep_alive(self) -> None:
        await self._send(KEEPALIVE_MESSAGE)

    async def stop(self) -> None:
        if self._socket is None:
            return
        await self._send(CLOSE_STREAM_MESSAGE)
        logger.debug("Deepgram close stream requested")

    async def finalize(self) -> None:
        try:
            if self._listener_task is not None:
                await self._listener_task
        finally:
            self._listener_task = None
            await self._exit_connection()
            await self._event_queue.put(None)
        logger.info("Deepgram channel finalized")

    async def events(self) -> AsyncIterator[ChannelEvent]:
        while True:
            event = await self._event_queue.get()
            if event is None:
                return
            yield event

    def close(self) -> None:
        if self._listener_task is not None and not self._listener_task.done():
            self._listener_task.cancel()
        self._listener_task = None
        self._context_manager = None
        self._socket = None

    async def _send(self, data: bytes | str) -> None:
        if self._socket is None:
            raise NotConnectedError()
        try:
            await self._socket._send(data)
        except Exception as exc:
            raise TransportError(f"Deepgram send failed: {exc}") from exc

    async def _exit_connection(self) -> None:
        context_manager, self._context_manager = self._context_manager, None
        self._socket = None
        if context_manager is not None:
            await context_manager.__aexit__(None, None, None)

    async def _on_open(self, _=None) -> None:
        await self._event_queue.put(ConnectionOpened())

    async def _on_message(self, message) -> None:
        if not isinstance(message, ListenV1ResultsEvent):
            return
        try:
            event = results_to_event(message)
        except (AttributeError, TypeError, ValueError):
            logger.warning("Malformed Deepgram results message", exc_info=True)
            return
        await self._event_queue.put(event)

    async def _on_close(self, _=None) -> None:
        await self._event_queue.put(ConnectionClosed())

    async def _on_error(self, error) -> None:
        await self._event_queue.put(ConnectionErrored(message=str(error)))
