import argparse
import asyncio
import logging
import signal
import sys
import threading
from collections.abc import Callable

from live_transcriber.config import LiveTranscriberConfig
from live_transcriber.domain.devices import resolve_device_index
from live_transcriber.domain.errors import ConnectionFailedError, NoInputDeviceError
from live_transcriber.domain.events import (
    ConnectionClosed,
    ConnectionErrored,
    ConnectionEvent,
    ConnectionOpened,
    TranscriptAlternative,
)
from live_transcriber.log_format import ColoredFormatter
from live_transcriber.ports.capture import AudioDevice

logger = logging.getLogger("live_transcriber")


def choose_device(
    devices: list[AudioDevice],
    requested: int | None = None,
    prompt: Callable[[str], str] = input,
    out: Callable[[str], None] = print,
) -> int:
    index = resolve_device_index(devices, requested)
    if index is not None:
        return index

    out("Select an audio input device:")
    for device in devices:
        out(f"({device.index}): {device.name}")

    valid = {device.index: device for device in devices}
    while True:
        answer = prompt("Select input device: ").strip()
        try:
            index = int(answer)
        except ValueError:
            continue
        if index in valid:
            out(f"Selected device {valid[index].name} as the input device.")
            return index


def format_alternatives(alternatives: list[TranscriptAlternative]) -> str:
    lines = [f"Received transcription with {len(alternatives)} alternatives."]
    for number, alt in enumerate(alternatives, start=1):
        speaker = f", speaker {alt.speaker}" if alt.speaker is not None else ""
        lines.append(f"Alternative {number}, confidence {alt.confidence:.2f}{speaker}:")
        lines.append(alt.text)
    lines.append("---")
    return "\n".join(lines)


def log_connection_event(event: ConnectionEvent) -> None:
    if isinstance(event, ConnectionOpened):
        logger.info("Deepgram connected")
    elif isinstance(event, ConnectionClosed):
        logger.info("Deepgram disconnected")
    elif isinstance(event, ConnectionErrored):
        logger.error("Deepgram error: %s", event.message)


async def print_transcript(alternatives: list[TranscriptAlternative]) -> None:
    print(format_alternatives(alternatives), flush=True)


def _configure_logging(verbose: bool, log_file: str) -> None:
    handler = logging.StreamHandler()
    handler.setFormatter(ColoredFormatter(datefmt="%H:%M:%S", color=sys.stderr.isatty()))
    handlers: list[logging.Handler] = [handler]
    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s %(name)s %(levelname)s %(message)s")
        )
        handlers.append(file_handler)

    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, handlers=handlers)
    logging.getLogger("websockets").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def main() -> None:
    parser = argparse.ArgumentParser(description="Live microphone transcription with Deepgram")
    parser.add_argument("--list-devices", action="store_true", help="List input devices and exit")
    parser.add_argument("--device", type=int, help="Input device index")
    parser.add_argument("--language", help="Language tag, e.g. en-GB")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose logging")
    args = parser.parse_args()

    config = LiveTranscriberConfig()
    if args.device is not None:
        config.capture_device = args.device
    if args.language:
        config.language = args.language

    _configure_logging(args.verbose, config.log_file)

    from live_transcriber.adapters.sounddevice_capture import list_input_devices

    devices = list_input_devices()
    if args.list_devices:
        for device in devices:
            print(f"({device.index}): {device.name}")
        return

    try:
        device_index = choose_device(devices, config.capture_device)
    except (NoInputDeviceError, ValueError) as exc:
        print(exc, file=sys.stderr)
        sys.exit(1)

    api_key = config.resolve_api_key()
    if not api_key:
        print("No Deepgram API key configured (LIVE_TRANSCRIBER_DEEPGRAM_API_KEY)", file=sys.stderr)
        sys.exit(1)

    sys.exit(run_console(config, api_key, device_index))


def run_console(config: LiveTranscriberConfig, api_key: str, device_index: int) -> int:
    try:
        asyncio.run(_run(config, api_key, device_index))
    except ConnectionFailedError as exc:
        logger.error("Could not connect to Deepgram: %s", exc)
        return 1
    return 0


def _wait_for_enter(loop: asyncio.AbstractEventLoop, exit_requested: asyncio.Event) -> None:
    sys.stdin.readline()
    loop.call_soon_threadsafe(exit_requested.set)


async def _run(config: LiveTranscriberConfig, api_key: str, device_index: int) -> None:
    from live_transcriber.adapters.deepgram_channel import DeepgramLiveChannel
    from live_transcriber.adapters.sounddevice_capture import SounddeviceCapture
    from live_transcriber.domain.session import TranscriptionSession

    session = TranscriptionSession(
        capture=SounddeviceCapture(
            channels=config.channels,
            frame_duration_ms=config.frame_duration_ms,
        ),
        channel=DeepgramLiveChannel(api_key=api_key),
        transcript_handler=print_transcript,
        device_index=device_index,
        options=config.transcription_options(),
        keepalive_interval=config.keepalive_interval_seconds,
        observer=log_connection_event if config.log_events else None,
        shutdown_timeout=config.shutdown_timeout_seconds,
        audio_queue_size=config.audio_queue_size,
    )

    loop = asyncio.get_running_loop()
    exit_requested = asyncio.Event()

    def handle_signal() -> None:
        logger.info("Received signal, shutting down...")
        exit_requested.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, handle_signal)

    logger.info("Starting Deepgram live console")
    await session.start()
    try:
        print("Starting transcription.")
        print("Press Enter to exit.")
        threading.Thread(
            target=_wait_for_enter, args=(loop, exit_requested), daemon=True
        ).start()
        await exit_requested.wait()
        logger.info("Exit requested. Shutting down.")
    finally:
        await session.stop()
    logger.info("Deepgram live console stopped")


if __name__ == "__main__":
    main()
