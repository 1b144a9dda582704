"""
xAPI Frame Parsing.

The broker terminates every JSON message with a blank line ("\\n\\n"). A single
socket read may carry several messages, or only part of one, so each
connection owns a FrameParser that buffers the incomplete tail between reads.

Example:
    parser = FrameParser()
    parser.feed('{"status":true,"customTag":"ping"')        # -> []
    parser.feed(',"returnData":{}}\\n\\n')                  # -> [{...}]
"""

import json
import logging
from typing import Any

from xstation.api.exceptions import XApiProtocolError
from xstation.lib.constants import FRAME_TERMINATOR

logger = logging.getLogger(__name__)


class FrameParser:
    """Incremental splitter for "\\n\\n"-terminated JSON frames."""

    def __init__(self):
        self._remainder = ""

    @property
    def remainder(self) -> str:
        """Buffered partial frame awaiting more data."""
        return self._remainder

    def reset(self) -> None:
        """Discard any buffered partial frame."""
        self._remainder = ""

    def feed(self, chunk: str) -> list[dict[str, Any]]:
        """Add received text and return every frame it completes.

        Args:
            chunk: Text as received from the transport

        Returns:
            Parsed frames in arrival order (possibly empty)

        Raises:
            XApiProtocolError: If a complete frame is not a JSON object
        """
        data = self._remainder + chunk
        segments = data.split(FRAME_TERMINATOR)

        # Last segment is empty when data ends exactly on a frame boundary,
        # otherwise it is an incomplete frame and is held back
        tail = segments.pop()
        self._remainder = tail if tail.strip() else ""

        frames = []
        for segment in segments:
            text = segment.strip()
            if not text:
                continue
            try:
                frame = json.loads(text)
            except json.JSONDecodeError as e:
                raise XApiProtocolError(f"Malformed frame: {e}: {text[:200]!r}")
            if not isinstance(frame, dict):
                raise XApiProtocolError(f"Frame is not a JSON object: {text[:200]!r}")
            frames.append(frame)

        if self._remainder:
            logger.debug(f"Holding back {len(self._remainder)} chars of partial frame")

        return frames
