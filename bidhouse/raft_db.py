"""raft_db.py
================
**Replicated** auction store driven by :pypi:`pysyncobj` (Raft).

:class:`ReplicatedAuctionStore` has the same surface as
:class:`bidhouse.db.AuctionStore`, so the services accept either.  Every
mutation goes through a :func:`pysyncobj.replicated` method and is applied
in log order on each node against that node's own SQLite file.  Since the
compare-and-set inside ``insert_bid`` only looks at replicated state, every
replica reaches the same accept/refuse outcome.

Timestamps and auction fields are decided by the caller *before*
replication; nothing inside a replicated method reads the clock.
Replicated methods never raise, a failed apply would otherwise stall the
node.  They return ``(ok, result)`` and the public wrappers turn a failed
apply into :class:`~bidhouse.errors.StoreUnavailable`, so a storage fault
is never mistaken for a lost compare-and-set or a missing row.
"""
from pysyncobj import SyncObj, SyncObjConf, replicated

import structlog

from bidhouse.db import AuctionStore
from bidhouse.errors import StoreUnavailable

logger = structlog.get_logger()


def default_conf():
    return SyncObjConf(
        autoTick=True,
        appendEntriesUseBatch=True,
        dynamicMembershipChange=True,
        commandsQueueSize=100000,
        appendEntriesPeriod=0.05,
        raftMinTimeout=1.0,
        raftMaxTimeout=2.0,
        electionTimeout=5.0,
        connectionRetryDelay=0.5,
        connectionTimeout=10.0,
        leaderFallbackTimeout=10.0,
        logCompactionMinEntries=10**12,
        logCompactionMinTime=10**12,
    )


class ReplicatedAuctionStore(SyncObj):
    """Auction store replicated over Raft.

    Parameters
    ----------
    self_address
        host:port string for this node's Raft endpoint.
    other_addresses
        List of host:port strings for peer nodes.
    db_path
        Local path of the SQLite file to use per node.
    timeout
        Seconds to wait for a replicated command to be applied.
    """

    def __init__(self, self_address, other_addresses, db_path, conf=None, timeout=10.0):
        super().__init__(self_address, other_addresses, conf or default_conf())
        self.__db = AuctionStore(db_path)
        self.__timeout = timeout

    def close(self):
        """Close the underlying SQLite connection (non-replicated)."""
        self.__db.close()

    def _apply_local(self, op, *args):
        """Run ``op`` on the local store and return ``(ok, result)``."""
        try:
            return True, op(*args)
        except Exception:
            logger.exception("replicated_apply_failed", op=op.__name__)
            return False, None

    def _replicate(self, method, *args):
        try:
            ok, result = method(*args, sync=True, timeout=self.__timeout)
        except Exception as e:
            # SyncObjException: no leader / not applied in time
            logger.error("replication_failed", op=method.__name__, error=repr(e))
            raise StoreUnavailable() from e
        if not ok:
            raise StoreUnavailable()
        return result

    # ---------- replicated mutations ---------- #
    @replicated
    def _put_auction(self, auction):
        return self._apply_local(self.__db.put_auction, auction)

    @replicated
    def _delete_auction(self, auction_id):
        return self._apply_local(self.__db.delete_auction, auction_id)

    @replicated
    def _insert_bid(self, bid, expected_highest_id):
        return self._apply_local(self.__db.insert_bid, bid, expected_highest_id)

    @replicated
    def _insert_notification(self, notification):
        return self._apply_local(self.__db.insert_notification, notification)

    @replicated
    def _mark_notification_read(self, user_id, notification_id):
        return self._apply_local(self.__db.mark_notification_read, user_id, notification_id)

    @replicated
    def _mark_all_notifications_read(self, user_id):
        return self._apply_local(self.__db.mark_all_notifications_read, user_id)

    # ---------- store surface: writes ---------- #
    def put_auction(self, auction):
        return self._replicate(self._put_auction, auction)

    def delete_auction(self, auction_id):
        return self._replicate(self._delete_auction, auction_id)

    def insert_bid(self, bid, expected_highest_id):
        return self._replicate(self._insert_bid, bid, expected_highest_id)

    def insert_notification(self, notification):
        return self._replicate(self._insert_notification, notification)

    def mark_notification_read(self, user_id, notification_id):
        return self._replicate(self._mark_notification_read, user_id, notification_id)

    def mark_all_notifications_read(self, user_id):
        return self._replicate(self._mark_all_notifications_read, user_id)

    # ---------- store surface: local reads ---------- #
    def get_auction(self, auction_id):
        return self.__db.get_auction(auction_id)

    def list_bids(self, auction_id):
        return self.__db.list_bids(auction_id)

    def list_visible_auctions(self, now, grace_start, viewer_id, limit, offset):
        return self.__db.list_visible_auctions(now, grace_start, viewer_id, limit, offset)

    def list_auctions_by_creator(self, user_id):
        return self.__db.list_auctions_by_creator(user_id)

    def list_auctions_bid_on(self, user_id, ended_before=None, exclude_own=False):
        return self.__db.list_auctions_bid_on(user_id, ended_before=ended_before, exclude_own=exclude_own)

    def list_notifications(self, user_id, only_unread=False):
        return self.__db.list_notifications(user_id, only_unread=only_unread)

    def count_unread_notifications(self, user_id):
        return self.__db.count_unread_notifications(user_id)
