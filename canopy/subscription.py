"""Publish/subscribe stream returned by Reference.on()."""

from typing import Any, Callable, List, Optional


class EventSubscription:
    """A single subscriber attached to an EventStream."""

    def __init__(self, stream: "EventStream", callback: Callable[[Any], None]):
        self.stream = stream
        self.callback = callback

    def stop(self) -> None:
        """Detach this subscriber from its stream."""
        self.stream.unsubscribe(self.callback)


class EventStream:
    """Delivers published values to its subscribers.

    publish() reports whether anyone is still listening, so the publisher
    can tear down its source once the stream is stopped or abandoned.

    Example:
        stream = db.ref("chats").on("child_added")
        sub = stream.subscribe(lambda snap: print(snap.key))
        ...
        sub.stop()
    """

    def __init__(self):
        self._subscribers: List[Callable[[Any], None]] = []
        self._stopped = False

    @property
    def stopped(self) -> bool:
        return self._stopped

    def subscribe(self, callback: Callable[[Any], None]) -> EventSubscription:
        """Add a subscriber.

        Raises:
            RuntimeError: If the stream was stopped
        """
        if self._stopped:
            raise RuntimeError("Cannot subscribe to a stopped event stream")
        self._subscribers.append(callback)
        return EventSubscription(self, callback)

    def unsubscribe(self, callback: Optional[Callable[[Any], None]] = None) -> None:
        """Remove one subscriber, or all of them if callback is None."""
        if callback is None:
            self._subscribers.clear()
        elif callback in self._subscribers:
            self._subscribers.remove(callback)

    def publish(self, value: Any) -> bool:
        """Deliver value to every subscriber.

        Returns:
            False if the stream is stopped or has no subscribers
        """
        if self._stopped or not self._subscribers:
            return False
        for callback in list(self._subscribers):
            callback(value)
        return True

    def stop(self) -> None:
        """Stop the stream; no further values are delivered."""
        self._stopped = True
        self._subscribers.clear()
