import logging

import numpy as np
import sounddevice as sd

from live_transcriber.ports.capture import AudioDevice, AudioSink

logger = logging.getLogger(__name__)


class SounddeviceCapture:
    """Microphone capture over PortAudio.

    The sink receives interleaved int16 PCM bytes on the PortAudio callback
    thread, one call per block.
    """

    def __init__(self, channels: int = 1, frame_duration_ms: int = 100) -> None:
        self._channels = channels
        self._frame_duration_ms = frame_duration_ms
        self._stream: sd.InputStream | None = None
        self._sink: AudioSink | None = None

    @property
    def is_recording(self) -> bool:
        return self._stream is not None

    async def start(self, device_index: int, sample_rate: int, sink: AudioSink) -> None:
        if self._stream is not None:
            raise RuntimeError("Capture is already recording")
        self._sink = sink

        stream = sd.InputStream(
            device=device_index,
            samplerate=sample_rate,
            channels=self._channels,
            dtype="int16",
            blocksize=int(sample_rate * self._frame_duration_ms / 1000),
            callback=self._audio_callback,
        )
        try:
            stream.start()
        except sd.PortAudioError:
            stream.close()
            raise
        self._stream = stream
        logger.info(
            "Audio capture started (device=%d, rate=%d, frame=%dms)",
            device_index, sample_rate, self._frame_duration_ms,
        )

    async def stop(self) -> None:
        stream, self._stream = self._stream, None
        if stream is None:
            return
        try:
            stream.stop()
        finally:
            stream.close()
            self._sink = None
        logger.info("Audio capture stopped")

    def close(self) -> None:
        stream, self._stream = self._stream, None
        self._sink = None
        if stream is not None:
            stream.close()

    def list_devices(self) -> list[AudioDevice]:
        return list_input_devices()

    def _audio_callback(self, indata: np.ndarray, frames: int, time_info, status) -> None:
        if status:
            logger.warning("Audio capture status: %s", status)
        sink = self._sink
        if sink is not None:
            sink(indata.tobytes())


def list_input_devices() -> list[AudioDevice]:
    devices = []
    for index, dev in enumerate(sd.query_devices()):
        max_input_channels = int(dev.get("max_input_channels", 0))
        if max_input_channels > 0:
            devices.append(AudioDevice(index=index, name=dev["name"], max_input_channels=max_input_channels))
    return devices

