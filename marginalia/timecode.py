"""Conversion between playback offsets and display strings."""

import math


def encode(seconds: float) -> str:
    """Format a playback offset as ``m:ss``.

    Seconds are floored; minutes are not clamped, so 3725 s is ``62:05``.
    """
    if seconds is None:
        seconds = 0
    total = max(0, math.floor(float(seconds)))
    minutes, secs = divmod(total, 60)
    return f"{minutes}:{secs:02d}"


def decode(text: str) -> int:
    """Parse an ``m:ss`` / ``mm:ss`` string back into whole seconds.

    Anything that is not exactly two colon-separated integers decodes to 0,
    so partially typed or corrupted values never raise.
    """
    if not isinstance(text, str):
        return 0
    parts = text.split(":")
    if len(parts) != 2:
        return 0
    try:
        minutes = int(parts[0].strip())
        seconds = int(parts[1].strip())
    except ValueError:
        return 0
    return minutes * 60 + seconds


def ms_to_timecode(ms: int, format: str = "vtt") -> str:
    """
    Convert milliseconds to timecode string.

    Args:
        ms: Time in milliseconds
        format: "vtt" for WebVTT (HH:MM:SS.mmm) or "srt" for SubRip (HH:MM:SS,mmm)

    Returns:
        Formatted timecode string
    """
    hours, remainder = divmod(int(ms), 3600000)
    minutes, remainder = divmod(remainder, 60000)
    seconds, milliseconds = divmod(remainder, 1000)

    separator = "." if format == "vtt" else ","
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}{separator}{milliseconds:03d}"
