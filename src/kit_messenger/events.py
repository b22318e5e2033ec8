from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List

STATE_CHANGED = "state.changed"
SESSION_REVOKED = "session.revoked"
CALL_FINISHED = "call.finished"


@dataclass(frozen=True)
class MessengerEvent:
    """A notification raised towards the presentation layer."""

    kind: str
    body: Dict[str, Any] = field(default_factory=dict)

    def to_frame(self) -> Dict[str, Any]:
        return {"v": 1, "t": self.kind, "body": dict(self.body)}


Callback = Callable[[MessengerEvent], None]


@dataclass
class Subscription:
    kind: str
    callback: Callback

    def deliver(self, event: MessengerEvent) -> None:
        self.callback(event)


class EventHub:
    """Registers listeners per event kind and fans events out to them."""

    ANY = "*"

    def __init__(self) -> None:
        self._subscriptions: Dict[str, List[Subscription]] = {}

    def subscribe(self, kind: str, callback: Callback) -> Subscription:
        subscription = Subscription(kind=kind, callback=callback)
        self._subscriptions.setdefault(kind, []).append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        subs = self._subscriptions.get(subscription.kind)
        if not subs:
            return
        try:
            subs.remove(subscription)
        except ValueError:
            return
        if not subs:
            self._subscriptions.pop(subscription.kind, None)

    def publish(self, event: MessengerEvent) -> None:
        listeners = list(self._subscriptions.get(event.kind, []))
        listeners.extend(self._subscriptions.get(self.ANY, []))
        for subscription in listeners:
            subscription.deliver(event)
