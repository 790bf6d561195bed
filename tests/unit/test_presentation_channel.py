"""
Unit Tests for the Presentation Channel
"""

from interpreter.services.presentation_channel import NotificationType, PresentationChannel


class TestPresentationChannel:
    """Test single-listener delivery."""

    def test_publish_without_listener_is_noop(self):
        channel = PresentationChannel()
        channel.status("Listening...")
        assert channel.last_status["message"] == "Listening..."

    def test_last_subscriber_wins(self):
        channel = PresentationChannel()
        first, second = [], []
        channel.subscribe(first.append)
        channel.subscribe(second.append)

        channel.status("Ready")

        assert first == []
        assert len(second) == 1

    def test_unsubscribe_only_removes_current_listener(self):
        channel = PresentationChannel()
        first, second = [], []
        unsubscribe_first = channel.subscribe(first.append)
        channel.subscribe(second.append)

        unsubscribe_first()

        assert channel.has_listener
        channel.status("Ready")
        assert len(second) == 1

    def test_listener_error_does_not_propagate(self):
        channel = PresentationChannel()

        def broken(notification):
            raise RuntimeError("render failed")

        channel.subscribe(broken)
        channel.publish(NotificationType.UNIT_CREATED, unit={"id": "unit_1"})

    def test_status_payload(self):
        channel = PresentationChannel()
        received = []
        channel.subscribe(received.append)

        channel.status("Detected: Lab Order", intent="lab_order")

        notification = received[0]
        assert notification.type == NotificationType.STATUS_CHANGED
        assert notification.payload == {"message": "Detected: Lab Order", "is_error": False, "intent": "lab_order"}
