"""
Photo-event detection.

A frame is a photo event when the camera block flags it, or (for decoders
that never set the flag) when the photo counter increases. Each counter
value produces at most one event.
"""

from datetime import datetime, timezone
from typing import Optional

from flightlog.models.frame import DecodedFrame


class PhotoEventTracker:
    """Stateful detector, one instance per flight log."""

    def __init__(self):
        self._last_photo_num: Optional[int] = None
        self._seen_numbers: set[int] = set()
        self.sequence = 0

    def observe(self, frame: DecodedFrame) -> bool:
        """Return True when this frame marks a new photo."""
        is_photo = False

        if frame.is_photo_flag:
            is_photo = True
        elif frame.photo_num is not None:
            increased = self._last_photo_num is not None and frame.photo_num > self._last_photo_num
            if increased and frame.photo_num not in self._seen_numbers:
                is_photo = True

        if frame.photo_num is not None:
            if is_photo:
                self._seen_numbers.add(frame.photo_num)
            self._last_photo_num = frame.photo_num

        if is_photo:
            self.sequence += 1
        return is_photo

    def filename_for(self, frame: DecodedFrame, absolute_ms: Optional[float] = None) -> str:
        """Photo filename: decoder hint, else timestamp-based, else sequence-based."""
        if frame.photo_filename_hint:
            return frame.photo_filename_hint

        number = frame.photo_num if frame.photo_num is not None else self.sequence
        if absolute_ms is not None:
            return synthesize_photo_filename(absolute_ms, number)
        return f"DJI_PHOTO_{number:04d}_D.DNG"


def synthesize_photo_filename(absolute_ms: float, number: int) -> str:
    taken = datetime.fromtimestamp(absolute_ms / 1000.0, tz=timezone.utc)
    return f"DJI_{taken.strftime('%Y%m%d%H%M%S')}_{number:04d}_D.DNG"
