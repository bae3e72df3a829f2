"""Tests for the in-process SignalBus."""

from bankfeed.events import CategorizationComplete, ImportComplete, SignalBus


class TestSignalBus:
    def test_delivers_to_matching_type_only(self):
        bus = SignalBus()
        imports, cats = [], []
        bus.subscribe(ImportComplete, imports.append)
        bus.subscribe(CategorizationComplete, cats.append)

        event = ImportComplete(total_transactions=3, files_processed=1)
        assert bus.publish(event) == 1
        assert imports == [event]
        assert cats == []

    def test_unsubscribe(self):
        bus = SignalBus()
        received = []
        sub = bus.subscribe(ImportComplete, received.append)
        sub.unsubscribe()
        sub.unsubscribe()  # idempotent
        bus.publish(ImportComplete(total_transactions=1, files_processed=1))
        assert received == []
        assert bus.subscriber_count(ImportComplete) == 0

    def test_failing_subscriber_does_not_block_others(self, caplog):
        bus = SignalBus()
        received = []

        def broken(event):
            raise RuntimeError("boom")

        bus.subscribe(CategorizationComplete, broken)
        bus.subscribe(CategorizationComplete, received.append)
        delivered = bus.publish(CategorizationComplete(total_categorized=4))
        assert delivered == 1
        assert len(received) == 1
        assert "failed handling CategorizationComplete" in caplog.text

    def test_unsubscribe_during_publish(self):
        bus = SignalBus()
        calls = []
        subs = []

        def first(event):
            calls.append("first")
            subs[1].unsubscribe()

        subs.append(bus.subscribe(ImportComplete, first))
        subs.append(bus.subscribe(ImportComplete, lambda e: calls.append("second")))
        bus.publish(ImportComplete(total_transactions=0, files_processed=1))
        # Snapshot taken before delivery
        assert calls == ["first", "second"]
        bus.publish(ImportComplete(total_transactions=0, files_processed=1))
        assert calls == ["first", "second", "first"]

    def test_payload_defaults(self):
        event = ImportComplete(total_transactions=0, files_processed=1)
        assert event.reports == []
        assert event.owner is None
        assert event.timestamp
