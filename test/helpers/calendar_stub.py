"""Recording calendar collaborator for confirmation-loop tests."""

from __future__ import annotations


class RecordingCalendar:
    """Calendar stub that records deletions and can be told to fail."""

    def __init__(self, error: Exception | None = None) -> None:
        """Initialize call tracking and the optional failure."""
        self.deleted: list[str] = []
        self._error = error

    async def delete_event(self, event_id: str) -> None:
        """Record the deletion, then raise the configured error if any."""
        self.deleted.append(event_id)
        if self._error is not None:
            raise self._error
