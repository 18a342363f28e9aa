from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

from live_transcriber.ports.transcriber import TranscriptionOptions


class LiveTranscriberConfig(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="LIVE_TRANSCRIBER_")

    deepgram_api_key: str = ""
    deepgram_api_key_file: str = ""

    model: str = "nova-2"
    language: str = "en-GB"
    punctuate: bool = True
    diarize: bool = True
    encoding: Literal["linear16"] = "linear16"
    sample_rate: int = 16000
    channels: int = 1

    capture_device: int | None = None
    frame_duration_ms: int = 100
    audio_queue_size: int = 100

    keepalive_interval_seconds: float = 5.0
    shutdown_timeout_seconds: float | None = 10.0

    log_events: bool = True
    log_file: str = ""

    def read_secret(self, path: str) -> str:
        if not path:
            return ""
        try:
            with open(path) as f:
                return f.read().strip()
        except FileNotFoundError:
            return ""

    def resolve_api_key(self) -> str:
        return self.deepgram_api_key or self.read_secret(self.deepgram_api_key_file)

    def transcription_options(self) -> TranscriptionOptions:
        return TranscriptionOptions(
            sample_rate=self.sample_rate,
            channels=self.channels,
            encoding=self.encoding,
            language=self.language,
            punctuate=self.punctuate,
            diarize=self.diarize,
            model=self.model,
        )
