"""
Stream availability notifications with replay-latest subscriptions.
"""
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Union

from sharecast.media.stream import RemoteMediaStream

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StreamAvailable:
    stream: RemoteMediaStream


@dataclass(frozen=True)
class StreamUnavailable:
    reason: str = ""


StreamNotification = Union[StreamAvailable, StreamUnavailable]
Subscriber = Callable[[StreamNotification], None]


class Subscription:
    """Handle returned by ``StreamPublisher.subscribe``."""

    def __init__(self, publisher: "StreamPublisher", callback: Subscriber):
        self._publisher = publisher
        self.callback = callback
        self.active = True

    def unsubscribe(self) -> None:
        if not self.active:
            return
        self.active = False
        self._publisher._remove(self)


class StreamPublisher:
    """
    Publishes the current media stream to subscribers.

    A subscriber receives the most recent notification immediately on
    subscribing, then every later one. Nothing is replayed before the first
    publish. Consecutive ``StreamUnavailable`` notifications are collapsed
    into one.
    """

    def __init__(self):
        self._subscriptions: List[Subscription] = []
        self.latest: Optional[StreamNotification] = None

    def subscribe(self, callback: Subscriber) -> Subscription:
        subscription = Subscription(self, callback)
        self._subscriptions.append(subscription)
        if self.latest is not None:
            self._deliver(subscription, self.latest)
        return subscription

    def publish(self, notification: StreamNotification) -> bool:
        """
        Deliver a notification to every subscriber.

        Returns:
            False if the notification was collapsed into the previous one
        """
        if isinstance(notification, StreamUnavailable) and isinstance(self.latest, StreamUnavailable):
            return False
        self.latest = notification
        for subscription in list(self._subscriptions):
            if subscription.active:
                self._deliver(subscription, notification)
        return True

    @property
    def current_stream(self) -> Optional[RemoteMediaStream]:
        if isinstance(self.latest, StreamAvailable):
            return self.latest.stream
        return None

    def _deliver(self, subscription: Subscription, notification: StreamNotification) -> None:
        try:
            subscription.callback(notification)
        except Exception as e:
            logger.error(f"Stream subscriber failed: {e}", exc_info=True)

    def _remove(self, subscription: Subscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)
