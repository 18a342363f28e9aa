import numpy as np
import pytest

from live_transcriber.domain import session as session_module
from live_transcriber.domain.events import TranscriptAlternative
from live_transcriber.domain.session import TranscriptionSession
from live_transcriber.ports.transcriber import TranscriptionOptions
from tests.fakes import FakeCaptureSource, FakeTranscriptionChannel

SAMPLE_RATE = 16000
CHUNK_DURATION_MS = 100
CHUNK_BYTES = int(SAMPLE_RATE * CHUNK_DURATION_MS / 1000) * 2


def generate_silence(duration_ms: int = CHUNK_DURATION_MS, sample_rate: int = SAMPLE_RATE) -> bytes:
    num_samples = int(sample_rate * duration_ms / 1000)
    return np.zeros(num_samples, dtype=np.int16).tobytes()


def generate_sine_wave(
    frequency: float = 440.0,
    duration_ms: int = CHUNK_DURATION_MS,
    amplitude: float = 0.8,
    sample_rate: int = SAMPLE_RATE,
) -> bytes:
    num_samples = int(sample_rate * duration_ms / 1000)
    t = np.arange(num_samples) / sample_rate
    signal = np.sin(2 * np.pi * frequency * t) * amplitude
    return (signal * 32767).astype(np.int16).tobytes()


class TranscriptRecorder:
    def __init__(self) -> None:
        self.received: list[list[TranscriptAlternative]] = []

    async def __call__(self, alternatives: list[TranscriptAlternative]) -> None:
        self.received.append(alternatives)


@pytest.fixture(autouse=True)
def release_claimed_devices():
    yield
    session_module._claimed_devices.clear()


@pytest.fixture
def calls():
    return []


@pytest.fixture
def fake_capture(calls):
    return FakeCaptureSource(calls=calls)


@pytest.fixture
def fake_channel(calls):
    return FakeTranscriptionChannel(calls=calls)


@pytest.fixture
def transcripts():
    return TranscriptRecorder()


@pytest.fixture
def observed_events():
    return []


@pytest.fixture
def session(fake_capture, fake_channel, transcripts, observed_events):
    return TranscriptionSession(
        capture=fake_capture,
        channel=fake_channel,
        transcript_handler=transcripts,
        device_index=0,
        options=TranscriptionOptions(sample_rate=SAMPLE_RATE, channels=1),
        observer=observed_events.append,
    )
