import asyncio
import json
from types import SimpleNamespace

import pytest

from live_transcriber.adapters import deepgram_channel
from live_transcriber.adapters.deepgram_channel import (
    CLOSE_STREAM_MESSAGE,
    KEEPALIVE_MESSAGE,
    DeepgramLiveChannel,
    connect_params,
    results_to_event,
)
from live_transcriber.domain.errors import ConnectionFailedError, NotConnectedError, TransportError
from live_transcriber.domain.events import (
    ConnectionClosed,
    ConnectionErrored,
    ConnectionOpened,
    TranscriptAlternative,
)
from live_transcriber.ports.transcriber import TranscriptionOptions

EventType = deepgram_channel.EventType


class FakeSocket:
    def __init__(self, fail_on_send: Exception | None = None) -> None:
        self.handlers = {}
        self.sent: list[bytes | str] = []
        self._fail_on_send = fail_on_send
        self._closed = asyncio.Event()

    def on(self, event, handler) -> None:
        self.handlers[event] = handler

    async def start_listening(self) -> None:
        await self._closed.wait()

    async def _send(self, data) -> None:
        if self._fail_on_send:
            raise self._fail_on_send
        self.sent.append(data)
        if data == CLOSE_STREAM_MESSAGE:
            self._closed.set()


class FakeConnection:
    def __init__(self, socket: FakeSocket, fail_on_enter: Exception | None = None) -> None:
        self._socket = socket
        self._fail_on_enter = fail_on_enter
        self.exited = False

    async def __aenter__(self) -> FakeSocket:
        if self._fail_on_enter:
            raise self._fail_on_enter
        return self._socket

    async def __aexit__(self, *exc_info) -> None:
        self.exited = True


@pytest.fixture
def fake_socket():
    return FakeSocket()


@pytest.fixture
def connections(monkeypatch, fake_socket):
    created = []

    class FakeClient:
        def __init__(self, api_key: str) -> None:
            self.api_key = api_key
            self.listen = SimpleNamespace(v1=SimpleNamespace(connect=self._connect))

        def _connect(self, **params):
            connection = FakeConnection(fake_socket)
            created.append((self.api_key, params, connection))
            return connection

    monkeypatch.setattr(deepgram_channel, "AsyncDeepgramClient", FakeClient)
    return created


def _results(alternatives, is_final=True):
    return SimpleNamespace(
        is_final=is_final,
        channel=SimpleNamespace(alternatives=alternatives),
    )


async def _collect(channel: DeepgramLiveChannel) -> list:
    return [event async for event in channel.events()]


class TestConnectParams:
    def test_defaults(self):
        assert connect_params(TranscriptionOptions()) == {
            "model": "nova-2",
            "language": "en-GB",
            "encoding": "linear16",
            "sample_rate": "16000",
            "channels": "1",
            "punctuate": "true",
            "diarize": "true",
        }

    def test_flags_off(self):
        params = connect_params(TranscriptionOptions(punctuate=False, diarize=False, sample_rate=48000))
        assert params["punctuate"] == "false"
        assert params["diarize"] == "false"
        assert params["sample_rate"] == "48000"


class TestResultsToEvent:
    def test_keeps_alternative_order(self):
        message = _results([
            SimpleNamespace(transcript="hello world", confidence=0.98, words=[]),
            SimpleNamespace(transcript="hello word", confidence=0.61, words=[]),
        ])

        event = results_to_event(message)

        assert event.is_final
        assert event.alternatives == (
            TranscriptAlternative(text="hello world", confidence=0.98),
            TranscriptAlternative(text="hello word", confidence=0.61),
        )

    def test_speaker_from_first_diarized_word(self):
        words = [SimpleNamespace(word="hi", speaker=None), SimpleNamespace(word="there", speaker=1)]
        message = _results([SimpleNamespace(transcript="hi there", confidence=0.9, words=words)])

        assert results_to_event(message).alternatives[0].speaker == 1

    def test_interim_and_empty(self):
        message = _results([SimpleNamespace(transcript="", confidence=None)], is_final=False)

        event = results_to_event(message)

        assert not event.is_final
        assert event.alternatives == (TranscriptAlternative(text="", confidence=0.0),)


class TestDeepgramLiveChannel:
    @pytest.mark.asyncio
    async def test_send_before_open_is_rejected(self):
        channel = DeepgramLiveChannel(api_key="key")
        with pytest.raises(NotConnectedError):
            await channel.send(b"\x00\x00")

    def test_close_without_open_is_safe(self):
        channel = DeepgramLiveChannel(api_key="key")
        channel.close()
        channel.close()
        assert not channel.is_open

    @pytest.mark.asyncio
    async def test_open_passes_options(self, connections, fake_socket):
        channel = DeepgramLiveChannel(api_key="secret")

        await channel.open(TranscriptionOptions(language="en-US"))

        api_key, params, _ = connections[0]
        assert api_key == "secret"
        assert params["language"] == "en-US"
        assert set(fake_socket.handlers) == {
            EventType.OPEN,
            EventType.MESSAGE,
            EventType.CLOSE,
            EventType.ERROR,
        }
        assert channel.is_open
        channel.close()

    @pytest.mark.asyncio
    async def test_handshake_failure(self, monkeypatch):
        class RefusingClient:
            def __init__(self, api_key: str) -> None:
                self.listen = SimpleNamespace(
                    v1=SimpleNamespace(
                        connect=lambda **params: FakeConnection(FakeSocket(), OSError("401 Unauthorized"))
                    )
                )

        monkeypatch.setattr(deepgram_channel, "AsyncDeepgramClient", RefusingClient)
        channel = DeepgramLiveChannel(api_key="bad")

        with pytest.raises(ConnectionFailedError, match="401"):
            await channel.open(TranscriptionOptions())
        assert not channel.is_open

    @pytest.mark.asyncio
    async def test_lifecycle_messages_and_events(self, connections, fake_socket):
        channel = DeepgramLiveChannel(api_key="key")
        await channel.open(TranscriptionOptions())
        await fake_socket.handlers[EventType.OPEN](None)

        await channel.send(b"\x01\x02")
        await channel.keep_alive()
        await channel.stop()
        await fake_socket.handlers[EventType.CLOSE](None)
        await channel.finalize()

        assert fake_socket.sent == [b"\x01\x02", KEEPALIVE_MESSAGE, CLOSE_STREAM_MESSAGE]
        assert json.loads(KEEPALIVE_MESSAGE) == {"type": "KeepAlive"}
        assert connections[0][2].exited
        assert not channel.is_open
        events = await _collect(channel)
        assert [type(e) for e in events] == [ConnectionOpened, ConnectionClosed]

    @pytest.mark.asyncio
    async def test_error_handler_queues_error_event(self, connections, fake_socket):
        channel = DeepgramLiveChannel(api_key="key")
        await channel.open(TranscriptionOptions())

        await fake_socket.handlers[EventType.ERROR](RuntimeError("stream dropped"))
        await channel.stop()
        await channel.finalize()

        events = await _collect(channel)
        assert events == [ConnectionErrored(message="stream dropped", timestamp=events[0].timestamp)]

    @pytest.mark.asyncio
    async def test_non_results_messages_are_ignored(self, connections, fake_socket):
        channel = DeepgramLiveChannel(api_key="key")
        await channel.open(TranscriptionOptions())

        await fake_socket.handlers[EventType.MESSAGE](SimpleNamespace(type="Metadata"))
        await channel.stop()
        await channel.finalize()

        assert await _collect(channel) == []

    @pytest.mark.asyncio
    async def test_send_failure_becomes_transport_error(self, monkeypatch):
        socket = FakeSocket(fail_on_send=ConnectionResetError("reset by peer"))

        class Client:
            def __init__(self, api_key: str) -> None:
                self.listen = SimpleNamespace(v1=SimpleNamespace(connect=lambda **params: FakeConnection(socket)))

        monkeypatch.setattr(deepgram_channel, "AsyncDeepgramClient", Client)
        channel = DeepgramLiveChannel(api_key="key")
        await channel.open(TranscriptionOptions())

        with pytest.raises(TransportError, match="reset by peer"):
            await channel.send(b"\x00")
        channel.close()
