"""
Tests de la diffusion des instantanés de progression.
"""

from doc_translator.events import EVENT_JOB_PROGRESS, ProgressPublisher


class TestProgressPublisher:
    def test_publish_to_job_subscribers_only(self):
        publisher = ProgressPublisher()
        first = publisher.subscribe("job-1")
        other = publisher.subscribe("job-2")

        assert publisher.publish("job-1", {"percentage": 50}) == 1

        event = first.get(timeout=0.1)
        assert event == {"event": EVENT_JOB_PROGRESS, "job_id": "job-1", "progress": {"percentage": 50}}
        assert other.get(timeout=0.01) is None

    def test_unsubscribe(self):
        publisher = ProgressPublisher()
        subscription = publisher.subscribe("job-1")

        with subscription:
            assert publisher.subscriber_count("job-1") == 1

        assert subscription.closed
        assert publisher.subscriber_count("job-1") == 0
        assert publisher.publish("job-1", {}) == 0

    def test_full_queue_keeps_latest_snapshot(self):
        publisher = ProgressPublisher()
        subscription = publisher.subscribe("job-1")

        for index in range(60):
            publisher.publish("job-1", {"n": index})

        received = []
        while (event := subscription.get(timeout=0.01)) is not None:
            received.append(event["progress"]["n"])
        assert len(received) == 50
        assert received[-1] == 59
