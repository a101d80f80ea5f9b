"""Tests for event subscriptions: on(), off(), once() and EventStream."""

import asyncio
import logging

import pytest

from canopy import DeliveryError, EventStream, ValidationError, connect


@pytest.fixture
def db():
    """Create an in-memory database."""
    database = connect("memory://")
    yield database
    database.close()


async def settle():
    """Let pending replay tasks run."""
    for _ in range(3):
        await asyncio.sleep(0)


class TestInitialDelivery:
    """Tests for delivery of current data when subscribing with a callback."""

    def test_value_fires_with_current_value_before_changes(self, db):
        received = []

        async def run():
            ref = db.ref("users/ewout")
            await ref.set({"name": "Ewout"})
            ref.on("value", lambda snap: received.append(snap.val()))
            await settle()
            await ref.update({"points": 1})

        asyncio.run(run())
        assert received == [
            {"name": "Ewout"},
            {"name": "Ewout", "points": 1},
        ]

    def test_value_fires_for_missing_node(self, db):
        received = []

        async def run():
            db.ref("users/nobody").on("value", received.append)
            await settle()

        asyncio.run(run())
        assert len(received) == 1
        assert received[0].exists() is False

    def test_child_added_fires_for_existing_children_first(self, db):
        received = []

        async def run():
            await db.ref("chats/k1").set({"title": "one"})
            await db.ref("chats/k2").set({"title": "two"})
            db.ref("chats").on("child_added", lambda snap: received.append(snap.key))
            await settle()
            await db.ref("chats/k3").set({"title": "three"})

        asyncio.run(run())
        assert received == ["k1", "k2", "k3"]

    def test_changes_during_initial_read_are_delivered_after_it(self, db):
        received = []

        async def run():
            await db.ref("chats/k1").set({"title": "one"})
            await db.ref("chats/k2").set({"title": "two"})
            db.ref("chats").on("child_added", lambda snap: received.append(snap.key))
            # Written before the initial read got a chance to run
            await db.ref("chats/k3").set({"title": "three"})
            await settle()

        asyncio.run(run())
        assert received == ["k1", "k2", "k3", "k3"]

    def test_child_changed_does_not_replay(self, db):
        received = []

        async def run():
            await db.ref("users/ewout").set({"points": 0})
            db.ref("users").on("child_changed", received.append)
            await settle()

        asyncio.run(run())
        assert received == []


class TestLiveEvents:
    """Tests for events caused by writes."""

    def test_child_changed(self, db):
        received = []

        async def run():
            await db.ref("users/ewout").set({"points": 0})
            await db.ref("users/betty").set({"points": 0})
            db.ref("users").on("child_changed", received.append)
            await db.ref("users/ewout").update({"points": 5})

        asyncio.run(run())
        assert [(snap.key, snap.val()) for snap in received] == [("ewout", {"points": 5})]

    def test_child_removed_carries_old_value(self, db):
        received = []

        async def run():
            await db.ref("users/ewout").set({"name": "Ewout"})
            db.ref("users").on("child_removed", received.append)
            await db.ref("users/ewout").remove()

        asyncio.run(run())
        assert len(received) == 1
        assert received[0].key == "ewout"
        assert received[0].val() == {"name": "Ewout"}

    def test_child_event_snapshot_points_at_child(self, db):
        received = []

        async def run():
            db.ref("users").on("child_added", received.append)
            await settle()
            await db.ref("users/ewout/name").set("Ewout")

        asyncio.run(run())
        assert len(received) == 1
        assert received[0].ref.path == "users/ewout"
        assert received[0].val() == {"name": "Ewout"}

    def test_value_event_from_descendant_write(self, db):
        received = []

        async def run():
            db.ref("users").on("value", received.append)
            await settle()
            await db.ref("users/ewout/name").set("Ewout")

        asyncio.run(run())
        assert received[-1].ref.path == "users"
        assert received[-1].val() == {"ewout": {"name": "Ewout"}}

    def test_unchanged_value_does_not_fire(self, db):
        received = []

        async def run():
            ref = db.ref("config")
            await ref.set({"debug": False})
            ref.on("value", received.append)
            await settle()
            await ref.set({"debug": False})

        asyncio.run(run())
        assert len(received) == 1

    def test_rich_values_in_events(self, db):
        received = []
        payload = b"\x00\xff"

        async def run():
            db.ref("files").on("child_added", received.append)
            await settle()
            await db.ref("files/logo").set({"data": payload})

        asyncio.run(run())
        assert received[0].val() == {"data": payload}

    def test_callback_error_does_not_fail_write(self, db, caplog):
        def broken(snap):
            raise RuntimeError("boom")

        async def run():
            db.ref("chats").on("child_added", broken)
            await settle()
            await db.ref("chats/a").set({"title": "A"})
            return (await db.ref("chats/a").get()).val()

        with caplog.at_level(logging.ERROR):
            value = asyncio.run(run())
        assert value == {"title": "A"}
        assert "boom" in caplog.text


class TestStreams:
    """Tests for the EventStream returned by on()."""

    def test_stream_receives_same_snapshots_as_callback(self, db):
        from_callback = []
        from_stream = []

        async def run():
            stream = db.ref("chats").on("child_added", from_callback.append)
            stream.subscribe(from_stream.append)
            await settle()
            await db.ref("chats/a").set(1)

        asyncio.run(run())
        assert [s.key for s in from_callback] == ["a"]
        assert [s.key for s in from_stream] == ["a"]

    def test_stream_without_callback_only_gets_live_events(self, db):
        received = []

        async def run():
            await db.ref("chats/old").set(1)
            stream = db.ref("chats").on("child_added")
            stream.subscribe(lambda snap: received.append(snap.key))
            await settle()
            await db.ref("chats/new").set(2)

        asyncio.run(run())
        assert received == ["new"]

    def test_stream_gets_initial_data_when_asked(self, db):
        """Passing True replays current children onto the stream."""
        received = []

        async def run():
            await db.ref("chats/k1").set(1)
            stream = db.ref("chats").on("child_added", True)
            stream.subscribe(lambda snap: received.append(snap.key))
            await settle()
            await db.ref("chats/k2").set(2)

        asyncio.run(run())
        assert received == ["k1", "k2"]

    def test_initial_data_without_listeners_unsubscribes(self, db):
        async def run():
            ref = db.ref("chats")
            ref.on("value", True)
            await settle()
            return ref

        ref = asyncio.run(run())
        assert ref._state.registrations == []
        assert db.backend._subscriptions == []

    def test_false_means_live_events_only(self, db):
        received = []

        async def run():
            await db.ref("chats/old").set(1)
            stream = db.ref("chats").on("child_added", False)
            stream.subscribe(lambda snap: received.append(snap.key))
            await settle()
            await db.ref("chats/new").set(2)

        asyncio.run(run())
        assert received == ["new"]

    def test_abandoned_stream_unsubscribes_from_backend(self, db):
        received = []

        async def run():
            ref = db.ref("chats")
            stream = ref.on("child_added")
            subscription = stream.subscribe(lambda snap: received.append(snap.key))
            await db.ref("chats/a").set(1)
            subscription.stop()
            await db.ref("chats/b").set(2)
            return ref

        ref = asyncio.run(run())
        assert received == ["a"]
        assert db.backend._subscriptions == []
        assert ref._state.registrations == []

    def test_stopped_stream_unsubscribes_from_backend(self, db):
        async def run():
            stream = db.ref("chats").on("child_added")
            stream.subscribe(lambda snap: None)
            stream.stop()
            await db.ref("chats/a").set(1)

        asyncio.run(run())
        assert db.backend._subscriptions == []


class TestOff:
    """Tests for off()."""

    def test_off_removes_matching_callback_only(self, db):
        first = []
        second = []

        async def run():
            ref = db.ref("chats")
            ref.on("child_added", first.append)
            ref.on("child_added", second.append)
            await settle()
            ref.off("child_added", first.append)
            await db.ref("chats/a").set(1)
            return ref

        ref = asyncio.run(run())
        assert first == []
        assert [s.key for s in second] == ["a"]
        assert len(ref._state.registrations) == 1
        assert len(db.backend._subscriptions) == 1

    def test_off_unknown_callback_logs_warning(self, db, caplog):
        async def run():
            ref = db.ref("chats")
            ref.on("child_added", lambda snap: None)
            await settle()
            with caplog.at_level(logging.WARNING, logger="canopy.reference"):
                result = ref.off("child_added", lambda snap: None)
            return ref, result

        ref, result = asyncio.run(run())
        assert result is ref
        assert "Can't find specified callback" in caplog.text
        assert len(ref._state.registrations) == 1
        assert len(db.backend._subscriptions) == 1

    def test_off_without_arguments_removes_everything(self, db):
        received = []

        async def run():
            ref = db.ref("chats")
            ref.on("child_added", received.append)
            ref.on("child_removed", received.append)
            ref.on("value", received.append)
            await settle()
            received.clear()
            ref.off()
            await db.ref("chats/a").set(1)
            await db.ref("chats/a").remove()
            return ref

        ref = asyncio.run(run())
        assert received == []
        assert ref._state.registrations == []
        assert db.backend._subscriptions == []

    def test_off_event_keeps_other_events(self, db):
        async def run():
            ref = db.ref("chats")
            ref.on("child_added", lambda snap: None)
            ref.on("child_removed", lambda snap: None)
            await settle()
            ref.off("child_added")
            return ref

        ref = asyncio.run(run())
        assert [r.event for r in ref._state.registrations] == ["child_removed"]
        assert [s.event for s in db.backend._subscriptions] == ["child_removed"]

    def test_off_before_initial_delivery(self, db):
        received = []

        async def run():
            await db.ref("chats/a").set(1)
            ref = db.ref("chats")
            ref.on("child_added", received.append)
            ref.off("child_added", received.append)
            await settle()

        asyncio.run(run())
        assert received == []


class TestDeliveryErrors:
    """Tests for errors reported to subscription handlers."""

    def test_delivery_error_is_logged_and_subscription_survives(self, db, caplog):
        received = []

        async def run():
            ref = db.ref("chats")
            ref.on("child_added", received.append)
            await settle()
            handler = db.backend._subscriptions[0].handler
            with caplog.at_level(logging.ERROR, logger="canopy.reference"):
                handler(DeliveryError("chats/a", "child_added"), "chats/a", None, None)
            await db.ref("chats/b").set(1)

        asyncio.run(run())
        assert "Error getting data for event child_added" in caplog.text
        assert [s.key for s in received] == ["b"]


class TestOnce:
    """Tests for once()."""

    def test_once_value(self, db):
        async def run():
            await db.ref("users/ewout").set({"name": "Ewout"})
            return await db.ref("users/ewout").once("value")

        snap = asyncio.run(run())
        assert snap.val() == {"name": "Ewout"}

    def test_once_child_added_resolves_on_next_child(self, db):
        async def run():
            await db.ref("chats/old").set(1)
            ref = db.ref("chats")
            pending = ref.once("child_added")
            await db.ref("chats/new").set({"title": "New"})
            await db.ref("chats/newer").set({"title": "Newer"})
            return ref, await pending

        ref, snap = asyncio.run(run())
        assert snap.key == "new"
        assert snap.val() == {"title": "New"}
        assert ref._state.registrations == []
        assert db.backend._subscriptions == []

    def test_once_with_several_children_in_one_write(self, db, caplog):
        """Only the first child resolves once(); the rest are ignored quietly."""

        async def run():
            ref = db.ref("chats")
            pending = ref.once("child_added")
            with caplog.at_level(logging.WARNING, logger="canopy.reference"):
                await ref.update({"a": 1, "b": 2})
            return await pending

        snap = asyncio.run(run())
        assert snap.key == "a"
        assert "Can't find specified callback" not in caplog.text


class TestValidation:
    """Tests for argument checks."""

    def test_unknown_event(self, db):
        with pytest.raises(ValidationError):
            db.ref("chats").on("child_moved", lambda snap: None)
        with pytest.raises(ValidationError):
            asyncio.run(db.ref("chats").once("bogus"))
        assert db.backend._subscriptions == []

    def test_callback_must_be_callable(self, db):
        with pytest.raises(ValidationError):
            db.ref("chats").on("value", "not a function")
        with pytest.raises(ValidationError):
            db.ref("chats").on("value", 5)
        assert db.backend._subscriptions == []


class TestEventStream:
    """Tests for EventStream on its own."""

    def test_publish_to_subscribers(self):
        stream = EventStream()
        first, second = [], []
        stream.subscribe(first.append)
        stream.subscribe(second.append)

        assert stream.publish(1) is True
        assert first == [1]
        assert second == [1]

    def test_publish_without_subscribers(self):
        assert EventStream().publish(1) is False

    def test_subscription_stop(self):
        stream = EventStream()
        received = []
        subscription = stream.subscribe(received.append)
        subscription.stop()

        assert stream.publish(1) is False
        assert received == []

    def test_unsubscribe_all(self):
        stream = EventStream()
        stream.subscribe(lambda v: None)
        stream.subscribe(lambda v: None)
        stream.unsubscribe()
        assert stream.publish(1) is False

    def test_stop(self):
        stream = EventStream()
        received = []
        stream.subscribe(received.append)
        stream.stop()

        assert stream.stopped is True
        assert stream.publish(1) is False
        assert received == []
        with pytest.raises(RuntimeError):
            stream.subscribe(received.append)
