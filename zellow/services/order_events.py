"""In-process change feed for orders.

Writers call ``broker.publish(order_id, version)`` after committing, where
``version`` is the number of history entries. Readers long-poll with
``broker.wait(order_id, after, timeout)``. Every waiter on an order sees the
same sequence of versions. Events do not cross process boundaries.

An order published with ``final=True`` is forgotten once its last waiter
has been woken.
"""
import threading
import logging

logger = logging.getLogger(__name__)


class OrderEventBroker:

    def __init__(self):
        self._condition = threading.Condition()
        self._versions = {}
        self._waiting = {}
        self._finished = set()

    def publish(self, order_id, version, final=False):
        with self._condition:
            current = self._versions.get(order_id, 0)
            if version > current:
                self._versions[order_id] = version
            self._condition.notify_all()
            if final:
                self._finished.add(order_id)
                self._discard_if_idle(order_id)
        logger.debug("Order %s published version %s%s", order_id, version,
                     ' (final)' if final else '')

    def version(self, order_id):
        with self._condition:
            return self._versions.get(order_id, 0)

    def tracked(self, order_id):
        with self._condition:
            return order_id in self._versions

    def wait(self, order_id, after, timeout):
        """Block until the order moves past ``after`` or ``timeout`` elapses.

        Returns the latest known version, which equals ``after`` (or less)
        on timeout.
        """
        with self._condition:
            self._waiting[order_id] = self._waiting.get(order_id, 0) + 1
            try:
                self._condition.wait_for(
                    lambda: self._versions.get(order_id, 0) > after,
                    timeout=timeout,
                )
                return self._versions.get(order_id, 0)
            finally:
                self._waiting[order_id] -= 1
                if not self._waiting[order_id]:
                    del self._waiting[order_id]
                self._discard_if_idle(order_id)

    def _discard_if_idle(self, order_id):
        # Caller holds the condition
        if order_id in self._finished and order_id not in self._waiting:
            self._finished.discard(order_id)
            self._versions.pop(order_id, None)

    def reset(self):
        with self._condition:
            self._versions.clear()
            self._waiting.clear()
            self._finished.clear()


broker = OrderEventBroker()
