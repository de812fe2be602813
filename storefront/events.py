"""
Publish/subscribe channel for cart change notifications.
"""
import logging
import threading
from typing import Callable, Dict, List

logger = logging.getLogger(__name__)

Listener = Callable[[], None]


class CartChannel:
    """Observer registry notified after every cart write"""

    def __init__(self):
        self._listeners: List[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener; returns a callable that unsubscribes it"""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def publish(self) -> None:
        for listener in list(self._listeners):
            try:
                listener()
            except Exception as e:
                logger.error(f"Cart listener failed: {type(e).__name__}: {e}", exc_info=True)

    @property
    def listener_count(self) -> int:
        return len(self._listeners)


class ChannelRegistry:
    """One channel per device, so every view of a device's cart hears its writes"""

    def __init__(self):
        self._channels: Dict[str, CartChannel] = {}
        self._lock = threading.Lock()

    def for_device(self, device_id: str) -> CartChannel:
        with self._lock:
            channel = self._channels.get(device_id)
            if channel is None:
                channel = CartChannel()
                self._channels[device_id] = channel
            return channel

    def discard_idle(self) -> int:
        """Drop channels nobody listens to; returns how many were dropped"""
        with self._lock:
            idle = [key for key, channel in self._channels.items() if channel.listener_count == 0]
            for key in idle:
                del self._channels[key]
            return len(idle)
