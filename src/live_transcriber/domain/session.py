import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

import janus

from live_transcriber.domain.errors import (
    ConnectionFailedError,
    DeviceBusyError,
    NotConnectedError,
    TranscriptionError,
    TransportError,
)
from live_transcriber.domain.events import (
    ConnectionErrored,
    ConnectionEvent,
    TranscriptAlternative,
    TranscriptReceived,
)
from live_transcriber.domain.keepalive import DEFAULT_KEEPALIVE_INTERVAL_SECONDS, KeepaliveTicker
from live_transcriber.domain.state import SessionState, validate_transition
from live_transcriber.ports.capture import CaptureSourcePort
from live_transcriber.ports.transcriber import TranscriptionChannelPort, TranscriptionOptions

logger = logging.getLogger(__name__)

TranscriptHandler = Callable[[list[TranscriptAlternative]], Awaitable[None]]
ConnectionObserver = Callable[[ConnectionEvent], None]

DEFAULT_AUDIO_QUEUE_SIZE = 100

# Device indices held by running sessions in this process.
_claimed_devices: set[int] = set()


class TranscriptionSession:
    """Owns one capture source and one transcription channel for a session.

    Start opens the channel, then starts capture and the keepalive ticker.
    Stop tears down in the reverse dependency order: ticker, capture, queued
    audio, channel graceful stop, channel finalize, remaining channel events,
    then disposal. Every teardown step runs even if an earlier one failed.

    Capture chunks arrive on the device thread and are handed to a bounded
    janus queue; an async pump on the event loop forwards them to the channel.
    Channel events are consumed by a single event loop task, so the transcript
    handler and the observer are never re-entered.
    """

    def __init__(
        self,
        capture: CaptureSourcePort,
        channel: TranscriptionChannelPort,
        transcript_handler: TranscriptHandler,
        device_index: int = 0,
        options: TranscriptionOptions | None = None,
        keepalive_interval: float = DEFAULT_KEEPALIVE_INTERVAL_SECONDS,
        observer: ConnectionObserver | None = None,
        shutdown_timeout: float | None = None,
        audio_queue_size: int = DEFAULT_AUDIO_QUEUE_SIZE,
    ) -> None:
        self._capture = capture
        self._channel = channel
        self._transcript_handler = transcript_handler
        self._device_index = device_index
        self._options = options or TranscriptionOptions()
        self._observer = observer
        self._shutdown_timeout = shutdown_timeout
        self._audio_queue_size = audio_queue_size

        self._ticker = KeepaliveTicker(self._send_keepalive, keepalive_interval)
        self._state = SessionState.UNSTARTED
        self._stopped = asyncio.Event()
        self._start_settled = asyncio.Event()

        self._audio_queue: janus.Queue[bytes | None] | None = None
        self._pump_task: asyncio.Task | None = None
        self._event_task: asyncio.Task | None = None
        self._device_claimed = False
        self._capture_started = False
        self._capturing = False
        self._channel_acquired = False
        self._channel_open = False

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state == SessionState.RUNNING

    @property
    def options(self) -> TranscriptionOptions:
        return self._options

    @property
    def device_index(self) -> int:
        return self._device_index

    async def __aenter__(self) -> "TranscriptionSession":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.stop()

    def _transition_to(self, target: SessionState) -> None:
        validate_transition(self._state, target)
        logger.info("State: %s -> %s", self._state.name, target.name)
        self._state = target

    async def start(self) -> None:
        validate_transition(self._state, SessionState.STARTING)
        self._claim_device()
        self._transition_to(SessionState.STARTING)
        self._start_settled.clear()

        try:
            await self._acquire()
        except BaseException:
            await self._teardown_failed_start()
            if self._state == SessionState.STARTING:
                self._transition_to(SessionState.UNSTARTED)
            raise
        finally:
            self._start_settled.set()

        self._transition_to(SessionState.RUNNING)

    async def _acquire(self) -> None:
        try:
            await self._channel.open(self._options)
        except Exception as exc:
            if isinstance(exc, ConnectionFailedError):
                raise
            raise ConnectionFailedError(f"Could not open transcription channel: {exc}") from exc

        self._channel_acquired = True
        self._channel_open = True
        # stop() may have been called while the handshake was in flight.
        validate_transition(self._state, SessionState.RUNNING)

        self._audio_queue = janus.Queue(maxsize=self._audio_queue_size)
        self._event_task = asyncio.create_task(self._event_loop())
        self._pump_task = asyncio.create_task(self._audio_loop(self._audio_queue))

        self._capture_started = True
        self._capturing = True
        try:
            await self._capture.start(
                self._device_index, self._options.sample_rate, self._enqueue_audio
            )
        except Exception:
            logger.error("Capture failed to start on device %d, closing channel", self._device_index)
            raise
        validate_transition(self._state, SessionState.RUNNING)

        self._ticker.start()

    async def _teardown_failed_start(self) -> None:
        # The start failure is what the caller sees; teardown errors are logged per step.
        try:
            await self._teardown()
        except Exception:
            logger.warning("Cleanup after failed start did not complete cleanly")

    async def stop(self) -> None:
        if self._state == SessionState.STOPPED:
            await self._stopped.wait()
            return

        starting = self._state == SessionState.STARTING
        self._transition_to(SessionState.STOPPED)
        try:
            if starting:
                # start() sees the STOPPED state and tears down what it acquired.
                await self._start_settled.wait()
            else:
                await self._teardown()
        finally:
            self._stopped.set()

    async def send_audio(self, chunk: bytes) -> None:
        if not self._channel_open:
            raise NotConnectedError()
        try:
            await self._channel.send(chunk)
        except NotConnectedError:
            raise
        except Exception as exc:
            self._report_event(ConnectionErrored(message=f"Failed to send audio: {exc}"))
            if isinstance(exc, TransportError):
                raise
            raise TransportError(str(exc)) from exc

    def _enqueue_audio(self, chunk: bytes) -> None:
        queue = self._audio_queue
        if queue is None or not self._capturing:
            return
        try:
            queue.sync_q.put_nowait(bytes(chunk))
        except janus.SyncQueueFull:
            logger.warning("Audio queue full, dropping %d byte chunk", len(chunk))
        except janus.SyncQueueShutDown:
            # Device callback raced teardown.
            logger.debug("Audio queue closed, dropping %d byte chunk", len(chunk))

    async def _audio_loop(self, queue: janus.Queue[bytes | None]) -> None:
        while True:
            try:
                chunk = await queue.async_q.get()
            except janus.AsyncQueueShutDown:
                break
            if chunk is None:
                break
            try:
                await self.send_audio(chunk)
            except TranscriptionError as exc:
                logger.debug("Dropped audio chunk: %s", exc)

    async def _send_keepalive(self) -> None:
        if not self._channel_open:
            return
        try:
            await self._channel.keep_alive()
        except Exception as exc:
            self._report_event(ConnectionErrored(message=f"Failed to send keepalive: {exc}"))

    async def _event_loop(self) -> None:
        try:
            async for event in self._channel.events():
                if isinstance(event, TranscriptReceived):
                    await self._handle_transcript(event)
                elif isinstance(event, ConnectionEvent):
                    self._report_event(event)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception("Channel event stream failed")
            self._report_event(ConnectionErrored(message=f"Event stream failed: {exc}"))

    async def _handle_transcript(self, event: TranscriptReceived) -> None:
        if not event.is_final:
            return
        alternatives = event.spoken_alternatives()
        if not alternatives:
            return

        logger.debug("Transcript: %s (%d alternatives)", alternatives[0].text, len(alternatives))
        try:
            await self._transcript_handler(alternatives)
        except Exception:
            logger.exception("Transcript handler failed")

    def _report_event(self, event: ConnectionEvent) -> None:
        if isinstance(event, ConnectionErrored):
            logger.warning("Connection error: %s", event.message)
        else:
            logger.debug("Connection event: %s", type(event).__name__)

        if self._observer is None:
            return
        try:
            self._observer(event)
        except Exception:
            logger.exception("Connection observer failed")

    def _claim_device(self) -> None:
        if self._device_index in _claimed_devices:
            raise DeviceBusyError(self._device_index)
        _claimed_devices.add(self._device_index)
        self._device_claimed = True

    def _release_device(self) -> None:
        if self._device_claimed:
            _claimed_devices.discard(self._device_index)
            self._device_claimed = False

    def _release(self) -> None:
        try:
            self._capture.close()
        finally:
            try:
                self._channel.close()
            finally:
                self._release_device()

    async def _bounded(self, aw: Awaitable[Any]) -> Any:
        if self._shutdown_timeout is None:
            return await aw
        return await asyncio.wait_for(aw, self._shutdown_timeout)

    async def _stop_ticker(self) -> None:
        self._ticker.stop()

    async def _stop_capture(self) -> None:
        self._capturing = False
        if self._capture_started:
            self._capture_started = False
            await self._capture.stop()

    async def _drain_audio(self) -> None:
        queue, pump = self._audio_queue, self._pump_task
        self._audio_queue = None
        self._pump_task = None
        try:
            if pump is not None and not pump.done() and queue is not None:
                await self._bounded(queue.async_q.put(None))
                await self._bounded(pump)
        finally:
            if pump is not None and not pump.done():
                pump.cancel()
            if queue is not None:
                await queue.aclose()

    async def _stop_channel(self) -> None:
        self._channel_open = False
        if self._channel_acquired:
            await self._bounded(self._channel.stop())

    async def _finalize_channel(self) -> None:
        if self._channel_acquired:
            self._channel_acquired = False
            await self._bounded(self._channel.finalize())

    async def _drain_events(self) -> None:
        task, self._event_task = self._event_task, None
        if task is None:
            return
        try:
            await self._bounded(task)
        finally:
            if not task.done():
                task.cancel()

    async def _dispose(self) -> None:
        self._release()

    async def _teardown(self) -> None:
        steps = (
            ("stop keepalive", self._stop_ticker),
            ("stop capture", self._stop_capture),
            ("drain audio", self._drain_audio),
            ("stop channel", self._stop_channel),
            ("finalize channel", self._finalize_channel),
            ("drain channel events", self._drain_events),
            ("dispose", self._dispose),
        )
        errors: list[Exception] = []
        for name, step in steps:
            try:
                await step()
            except Exception as exc:
                logger.exception("Teardown step '%s' failed", name)
                errors.append(exc)

        logger.info("Session teardown complete (%d failed steps)", len(errors))
        if errors:
            raise errors[0]
