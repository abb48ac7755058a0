"""notifications.py
=================================
Outbid notifications: persistence through the store plus a live push to
any connected subscriber of the recipient.

Outbid delivery runs after the bid commit, optionally on a thread pool so
the bidder never waits for it.  A delivery failure is logged and dropped;
it never surfaces to the bidder.
"""
import queue
import threading

import structlog

from bidhouse.models import Notification, NotificationKind

logger = structlog.get_logger()


class NotificationDispatcher:
    """
    Parameters
    ----------
    store
        An :class:`~bidhouse.db.AuctionStore` or
        :class:`~bidhouse.raft_db.ReplicatedAuctionStore`.
    executor
        ``concurrent.futures.Executor`` for outbid delivery.  ``None`` delivers
        inline on the calling thread, still after the bid commit.
    """

    def __init__(self, store, executor=None):
        self.store = store
        self._executor = executor

        self.subscribers = {}
        self.subscribers_lock = threading.Lock()

    # ------------------ live subscribers ------------------

    def add_subscriber(self, user_id) -> queue.Queue:
        q = queue.Queue()
        with self.subscribers_lock:
            self.subscribers.setdefault(user_id, set()).add(q)
        return q

    def remove_subscriber(self, user_id, q):
        with self.subscribers_lock:
            queues = self.subscribers.get(user_id)
            if queues is None:
                return
            queues.discard(q)
            if not queues:
                del self.subscribers[user_id]

    def push(self, notification: Notification):
        with self.subscribers_lock:
            for q in self.subscribers.get(notification.user_id, ()):
                q.put(notification)

    # ------------------ store-backed operations ------------------

    def create(self, notification: Notification) -> Notification:
        stored = self.store.insert_notification(notification)
        self.push(stored)
        return stored

    def dispatch_outbid(self, recipient_id, auction, timestamp):
        """Queue an outbid notice for ``recipient_id``.  Never raises.

        Returns the pending future when an executor is configured, otherwise
        the stored notification (or ``None`` if delivery failed).
        """
        n = Notification(
            user_id=recipient_id,
            auction_id=auction.auction_id,
            kind=NotificationKind.OUTBID,
            title=auction.title,
            timestamp=timestamp,
        )
        if self._executor is None:
            return self._deliver(n)
        try:
            return self._executor.submit(self._deliver, n)
        except RuntimeError:
            # executor already shut down
            logger.exception("notification_dispatch_failed",
                             recipient_id=recipient_id, auction_id=auction.auction_id)
            return None

    def _deliver(self, n: Notification):
        try:
            stored = self.create(n)
        except Exception:
            logger.exception("notification_dispatch_failed",
                             recipient_id=n.user_id, auction_id=n.auction_id)
            return None
        logger.info("notification_created", recipient_id=n.user_id,
                    auction_id=n.auction_id, notification_id=stored.notification_id)
        return stored

    def list_for_user(self, user_id):
        return self.store.list_notifications(user_id)

    def mark_read(self, user_id, notification_id):
        """Unknown ids, other users' ids and already-read ids are ignored."""
        self.store.mark_notification_read(user_id, notification_id)

    def mark_all_read(self, user_id):
        self.store.mark_all_notifications_read(user_id)

    def unread_count(self, user_id) -> int:
        return self.store.count_unread_notifications(user_id)

    def shutdown(self, wait=True):
        if self._executor is not None:
            self._executor.shutdown(wait=wait)
