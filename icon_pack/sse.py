"""
Incremental decoder for ``text/event-stream`` bodies.

Lines are fed one at a time (without their line terminator) and a
``ServerSentEvent`` comes out whenever a blank line closes an event.
Only the fields the generation stream uses are interpreted: ``event``,
``data``, ``id`` and ``retry``. Comment lines (leading ``:``) are skipped.
"""

from dataclasses import dataclass
from typing import AsyncIterator, List, Optional


@dataclass
class ServerSentEvent:
    """A decoded push event."""
    event: str = "message"
    data: str = ""
    id: Optional[str] = None
    retry: Optional[int] = None


class SSEDecoder:
    """Line oriented state machine for the event-stream format."""

    def __init__(self) -> None:
        self._event = ""
        self._data: List[str] = []
        self._last_event_id: Optional[str] = None
        self._retry: Optional[int] = None

    @property
    def last_event_id(self) -> Optional[str]:
        return self._last_event_id

    @property
    def retry(self) -> Optional[int]:
        """Reconnection delay the server asked for, in milliseconds."""
        return self._retry

    def decode(self, line: str) -> Optional[ServerSentEvent]:
        """
        Consume one line.

        Args:
            line: A single line of the body without its terminator

        Returns:
            The completed event when ``line`` is blank and an event was
            pending, otherwise None
        """
        if not line:
            # A block without data lines dispatches nothing
            if not self._data:
                self._event = ""
                return None
            sse = ServerSentEvent(
                event=self._event or "message",
                data="\n".join(self._data),
                id=self._last_event_id,
                retry=self._retry,
            )
            self._event = ""
            self._data = []
            return sse

        if line.startswith(":"):
            return None

        name, sep, value = line.partition(":")
        if sep and value.startswith(" "):
            value = value[1:]

        if name == "event":
            self._event = value
        elif name == "data":
            self._data.append(value)
        elif name == "id":
            if "\0" not in value:
                self._last_event_id = value
        elif name == "retry":
            if value.isdigit():
                self._retry = int(value)
        # Unknown field names are ignored

        return None


async def iter_sse(lines: AsyncIterator[str]) -> AsyncIterator[ServerSentEvent]:
    """
    Decode an async stream of lines into events.

    An event still open when the stream ends is discarded, as browsers do.
    """
    decoder = SSEDecoder()
    async for line in lines:
        sse = decoder.decode(line.rstrip("\r\n"))
        if sse is not None:
            yield sse
