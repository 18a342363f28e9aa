from live_transcriber.domain.errors import NoInputDeviceError
from live_transcriber.ports.capture import AudioDevice


def resolve_device_index(devices: list[AudioDevice], requested: int | None = None) -> int | None:
    """Pick the capture device without asking the user.

    Returns ``None`` when several devices exist and none was requested, in
    which case the caller has to choose.
    """
    if not devices:
        raise NoInputDeviceError()
    if requested is not None:
        if not any(d.index == requested for d in devices):
            raise ValueError(f"Device {requested} is not an input device")
        return requested
    if len(devices) == 1:
        return devices[0].index
    return None
