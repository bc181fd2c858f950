"""Fake notifier — records notifications in memory for test assertions."""

from uuid import uuid4

from delivery.notification.port import NotificationPort


class FakeNotifier(NotificationPort):
    def __init__(self):
        self.sent: list[dict] = []
        self.should_succeed = True
        self.failure_reason = "Notification delivery failed"

    def configure(self, should_succeed: bool = True, failure_reason: str = "Notification delivery failed"):
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason

    def notify(self, event: str, payload: dict) -> dict:
        if not self.should_succeed:
            raise ConnectionError(self.failure_reason)

        message_id = f"note-{uuid4().hex[:12]}"
        self.sent.append({"message_id": message_id, "event": event, "payload": payload})
        return {"message_id": message_id, "status": "sent"}

    def events(self) -> list[str]:
        return [record["event"] for record in self.sent]

    def reset(self):
        self.sent.clear()
        self.should_succeed = True
        self.failure_reason = "Notification delivery failed"
