"""Notifier registry.

Uses the in-memory fake by default; ``DELIVERY_NOTIFIER`` selects a real
adapter in deployments that have one.
"""

import os

from delivery.notification.port import NotificationPort

_current_notifier: NotificationPort | None = None


def get_notifier() -> NotificationPort:
    """Return the configured notifier (singleton)."""
    global _current_notifier
    if _current_notifier is None:
        adapter = os.environ.get("DELIVERY_NOTIFIER", "fake")
        if adapter == "fake":
            from delivery.notification.fake_adapter import FakeNotifier

            _current_notifier = FakeNotifier()
        else:
            raise ValueError(f"Unknown notifier adapter: {adapter}")
    return _current_notifier


def set_notifier(notifier: NotificationPort) -> None:
    global _current_notifier
    _current_notifier = notifier


def reset_notifier() -> None:
    """Drop the singleton (useful for testing)."""
    global _current_notifier
    _current_notifier = None
