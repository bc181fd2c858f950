"""Notification port — fire-and-forget delivery of lifecycle messages."""

from abc import ABC, abstractmethod


class NotificationPort(ABC):
    """Abstract interface for notification dispatch adapters."""

    @abstractmethod
    def notify(self, event: str, payload: dict) -> dict:
        """Hand ``payload`` to the channel for ``event``.

        Returns:
            dict with keys: message_id, status ("sent" or "failed"), error (optional)
        """
        ...
