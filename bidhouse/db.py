"""db.py
================
SQLite-backed auction store.

:class:`AuctionStore` owns one connection and a private lock that guards
every statement, so a single instance can be shared by all request
threads.  Bid insertion is a compare-and-set: the caller states which bid
it believes is currently highest and the insert only happens if that is
still true inside the same write transaction.

Amounts are stored as decimal TEXT and timestamps as fixed-width ISO-8601
UTC strings (see :func:`bidhouse.utils.to_iso`), which keeps time range
filters in SQL exact.  Highest-bid selection happens in Python with
:func:`bidhouse.models.highest_bid` since TEXT amounts do not sort
numerically.
"""
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import replace

import structlog

from bidhouse.errors import StoreUnavailable
from bidhouse.models import (
    Auction, AuctionState, Bid, Notification, NotificationKind, highest_bid,
)
from bidhouse.utils import from_iso, to_iso, to_money

logger = structlog.get_logger()

SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS auctions (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        title TEXT NOT NULL,
        description TEXT NOT NULL DEFAULT '',
        starting_price TEXT NOT NULL,
        start_date_time TEXT NOT NULL,
        end_date_time TEXT NOT NULL,
        auction_state TEXT NOT NULL DEFAULT 'Active',
        created_by TEXT NOT NULL,
        created_at TEXT NOT NULL,
        updated_at TEXT,
        main_image_url TEXT NOT NULL DEFAULT '',
        thumbnail_url TEXT NOT NULL DEFAULT ''
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS bids (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        auction_id INTEGER NOT NULL,
        bidder_id TEXT NOT NULL,
        amount TEXT NOT NULL,
        created_at TEXT NOT NULL,
        FOREIGN KEY (auction_id) REFERENCES auctions(id) ON DELETE CASCADE
    )
    """,
    # notifications outlive their auction, so no foreign key here
    """
    CREATE TABLE IF NOT EXISTS notifications (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT NOT NULL,
        auction_id INTEGER NOT NULL,
        kind TEXT NOT NULL,
        title TEXT NOT NULL,
        timestamp TEXT NOT NULL,
        is_read INTEGER NOT NULL DEFAULT 0
    )
    """,
    "CREATE INDEX IF NOT EXISTS ix_auctions_end ON auctions (end_date_time)",
    "CREATE INDEX IF NOT EXISTS ix_auctions_creator ON auctions (created_by)",
    "CREATE INDEX IF NOT EXISTS ix_bids_auction ON bids (auction_id)",
    "CREATE INDEX IF NOT EXISTS ix_bids_bidder ON bids (bidder_id)",
    "CREATE INDEX IF NOT EXISTS ix_notifications_user ON notifications (user_id, is_read)",
)

### ROW MAPPING ###

def _auction_from_row(row) -> Auction:
    return Auction(
        auction_id=row["id"],
        title=row["title"],
        description=row["description"],
        starting_price=to_money(row["starting_price"]),
        start_date_time=from_iso(row["start_date_time"]),
        end_date_time=from_iso(row["end_date_time"]),
        auction_state=AuctionState(row["auction_state"]),
        created_by=row["created_by"],
        created_at=from_iso(row["created_at"]),
        updated_at=from_iso(row["updated_at"]),
        main_image_url=row["main_image_url"],
        thumbnail_url=row["thumbnail_url"],
    )


def _bid_from_row(row) -> Bid:
    return Bid(
        bid_id=row["id"],
        auction_id=row["auction_id"],
        bidder_id=row["bidder_id"],
        amount=to_money(row["amount"]),
        created_at=from_iso(row["created_at"]),
    )


def _notification_from_row(row) -> Notification:
    return Notification(
        notification_id=row["id"],
        user_id=row["user_id"],
        auction_id=row["auction_id"],
        kind=NotificationKind(row["kind"]),
        title=row["title"],
        timestamp=from_iso(row["timestamp"]),
        is_read=bool(row["is_read"]),
    )


def _auction_params(a: Auction) -> tuple:
    return (
        a.title, a.description, str(a.starting_price),
        to_iso(a.start_date_time), to_iso(a.end_date_time),
        AuctionState(a.auction_state).value, a.created_by,
        to_iso(a.created_at), to_iso(a.updated_at) if a.updated_at else None,
        a.main_image_url or "", a.thumbnail_url or "",
    )


class AuctionStore:
    """Thread-safe SQLite store for auctions, bids and notifications.

    Parameters
    ----------
    db_path
        Filesystem path of the SQLite DB, or ``":memory:"``.  The file is
        created on first use.
    """

    def __init__(self, db_path):
        self.__db_path = db_path
        self.__conn = None
        self.__conn_lock = threading.Lock()
        self._init_db()

    def _get_connection(self):
        if self.__conn is None:
            self.__conn = sqlite3.connect(self.__db_path, check_same_thread=False)
            self.__conn.row_factory = sqlite3.Row
            self.__conn.execute("PRAGMA foreign_keys = ON")
        return self.__conn

    @contextmanager
    def _locked(self):
        """Serialize access to the connection and turn driver failures into
        :class:`StoreUnavailable`.  Any open transaction is rolled back."""
        with self.__conn_lock:
            try:
                c = self._get_connection()
                yield c
            except sqlite3.Error as e:
                self._rollback()
                logger.error("store_error", db_path=self.__db_path, error=str(e))
                raise StoreUnavailable() from e
            except BaseException:
                self._rollback()
                raise

    def _rollback(self):
        if self.__conn is not None and self.__conn.in_transaction:
            self.__conn.rollback()

    def _init_db(self):
        with self._locked() as c:
            for stmt in SCHEMA:
                c.execute(stmt)
            c.commit()

    def close(self):
        """Close the underlying SQLite connection (idempotent)."""
        if self.__conn is not None:
            with self.__conn_lock:
                self.__conn.close()
                self.__conn = None

    # ─── Prevent pickle of locks & connections ─────────────────────────────────
    def __getstate__(self):
        st = self.__dict__.copy()
        st.pop('_AuctionStore__conn_lock', None)
        st.pop('_AuctionStore__conn', None)
        return st

    def __setstate__(self, st):
        self.__dict__.update(st)
        self.__conn_lock = threading.Lock()
        self.__conn = None

    ### AUCTIONS ###

    def get_auction(self, auction_id):
        """Return the :class:`Auction` with this id or ``None``."""
        with self._locked() as c:
            row = c.execute("SELECT * FROM auctions WHERE id = ?", (auction_id,)).fetchone()
        return _auction_from_row(row) if row else None

    def put_auction(self, auction: Auction):
        """Insert a new auction (``auction_id is None``) or overwrite the
        fields of an existing one.

        Returns the stored :class:`Auction`, or ``None`` when an update
        targets an id that does not exist.
        """
        params = _auction_params(auction)
        with self._locked() as c:
            if auction.auction_id is None:
                cur = c.execute("""
                INSERT INTO auctions (title, description, starting_price,
                    start_date_time, end_date_time, auction_state, created_by,
                    created_at, updated_at, main_image_url, thumbnail_url)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""", params)
                c.commit()
                return replace(auction, auction_id=cur.lastrowid)

            cur = c.execute("""
            UPDATE auctions SET title = ?, description = ?, starting_price = ?,
                start_date_time = ?, end_date_time = ?, auction_state = ?,
                created_by = ?, created_at = ?, updated_at = ?,
                main_image_url = ?, thumbnail_url = ?
            WHERE id = ?""", params + (auction.auction_id,))
            c.commit()
            return auction if cur.rowcount > 0 else None

    def delete_auction(self, auction_id) -> bool:
        """Delete an auction and, through ON DELETE CASCADE, its bids.
        Return True if a row was deleted."""
        with self._locked() as c:
            cur = c.execute("DELETE FROM auctions WHERE id = ?", (auction_id,))
            c.commit()
            return cur.rowcount > 0

    def list_visible_auctions(self, now, grace_start, viewer_id, limit, offset):
        """Open auctions, plus auctions that ended after ``grace_start`` on
        which ``viewer_id`` placed a bid.  Soonest-ending first."""
        with self._locked() as c:
            rows = c.execute("""
            SELECT a.* FROM auctions a
            WHERE a.end_date_time > :now
               OR (:viewer IS NOT NULL
                   AND a.end_date_time > :grace AND a.end_date_time <= :now
                   AND EXISTS (SELECT 1 FROM bids b
                               WHERE b.auction_id = a.id AND b.bidder_id = :viewer))
            ORDER BY a.end_date_time ASC, a.id ASC
            LIMIT :limit OFFSET :offset""", {
                "now": to_iso(now), "grace": to_iso(grace_start),
                "viewer": viewer_id, "limit": limit, "offset": offset,
            }).fetchall()
        return [_auction_from_row(r) for r in rows]

    def list_auctions_by_creator(self, user_id):
        with self._locked() as c:
            rows = c.execute("""
            SELECT * FROM auctions WHERE created_by = ?
            ORDER BY created_at DESC, id DESC""", (user_id,)).fetchall()
        return [_auction_from_row(r) for r in rows]

    def list_auctions_bid_on(self, user_id, ended_before=None, exclude_own=False):
        """Auctions on which ``user_id`` has at least one bid.

        ``ended_before`` restricts to auctions whose end time is at or before
        that instant and flips the order to newest-ended first; otherwise
        the order is soonest-ending first.
        """
        query = """
        SELECT a.* FROM auctions a
        WHERE EXISTS (SELECT 1 FROM bids b WHERE b.auction_id = a.id AND b.bidder_id = ?)"""
        params = [user_id]
        if exclude_own:
            query += " AND a.created_by != ?"
            params.append(user_id)
        if ended_before is not None:
            query += " AND a.end_date_time <= ? ORDER BY a.end_date_time DESC, a.id DESC"
            params.append(to_iso(ended_before))
        else:
            query += " ORDER BY a.end_date_time ASC, a.id ASC"
        with self._locked() as c:
            rows = c.execute(query, params).fetchall()
        return [_auction_from_row(r) for r in rows]

    ### BIDS ###

    @staticmethod
    def _fetch_bids(c, auction_id):
        rows = c.execute("""
        SELECT * FROM bids WHERE auction_id = ?
        ORDER BY created_at ASC, id ASC""", (auction_id,)).fetchall()
        return [_bid_from_row(r) for r in rows]

    def list_bids(self, auction_id):
        """Return every bid of an auction, oldest first."""
        with self._locked() as c:
            return self._fetch_bids(c, auction_id)

    def insert_bid(self, bid: Bid, expected_highest_id):
        """Append ``bid`` only if the auction's highest bid still has id
        ``expected_highest_id`` (``None`` meaning "no bids yet").

        Returns the stored :class:`Bid` with its id, or ``None`` if the
        highest bid moved on or the auction is gone.  Nothing is written in
        that case.
        """
        with self._locked() as c:
            c.execute("BEGIN IMMEDIATE")
            current = highest_bid(self._fetch_bids(c, bid.auction_id))
            current_id = current.bid_id if current else None
            if current_id != expected_highest_id:
                c.rollback()
                return None
            try:
                cur = c.execute("""
                INSERT INTO bids (auction_id, bidder_id, amount, created_at)
                VALUES (?, ?, ?, ?)""",
                    (bid.auction_id, bid.bidder_id, str(bid.amount), to_iso(bid.created_at)))
            except sqlite3.IntegrityError:
                # auction deleted underneath us
                c.rollback()
                return None
            c.commit()
            return replace(bid, bid_id=cur.lastrowid)

    ### NOTIFICATIONS ###

    def insert_notification(self, n: Notification) -> Notification:
        with self._locked() as c:
            cur = c.execute("""
            INSERT INTO notifications (user_id, auction_id, kind, title, timestamp, is_read)
            VALUES (?, ?, ?, ?, ?, ?)""",
                (n.user_id, n.auction_id, NotificationKind(n.kind).value, n.title,
                 to_iso(n.timestamp), int(n.is_read)))
            c.commit()
            return replace(n, notification_id=cur.lastrowid)

    def list_notifications(self, user_id, only_unread=False):
        """
        Return all notifications for the user, newest first
        If only_unread is True then return only rows where is_read = 0
        """
        query = "SELECT * FROM notifications WHERE user_id = ?"
        if only_unread:
            query += " AND is_read = 0"
        query += " ORDER BY timestamp DESC, id DESC"
        with self._locked() as c:
            rows = c.execute(query, (user_id,)).fetchall()
        return [_notification_from_row(r) for r in rows]

    def mark_notification_read(self, user_id, notification_id) -> bool:
        """
        Mark a notification as read if the user is its recipient
        Return True if a row changed from unread to read
        """
        with self._locked() as c:
            cur = c.execute("""
            UPDATE notifications SET is_read = 1
            WHERE id = ? AND user_id = ? AND is_read = 0""", (notification_id, user_id))
            c.commit()
            return cur.rowcount > 0

    def mark_all_notifications_read(self, user_id) -> int:
        with self._locked() as c:
            cur = c.execute("""
            UPDATE notifications SET is_read = 1
            WHERE user_id = ? AND is_read = 0""", (user_id,))
            c.commit()
            return cur.rowcount

    def count_unread_notifications(self, user_id) -> int:
        with self._locked() as c:
            row = c.execute("""
            SELECT COUNT(*) AS cnt FROM notifications
            WHERE user_id = ? AND is_read = 0""", (user_id,)).fetchone()
        return row["cnt"] if row else 0
