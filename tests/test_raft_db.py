from decimal import Decimal

import pytest

from bidhouse.auctions import AuctionService
from bidhouse.bidding import BidPlacementService
from bidhouse.errors import StoreUnavailable
from bidhouse.models import Bid, BidState, Notification, NotificationKind
from bidhouse.notifications import NotificationDispatcher
from bidhouse.projector import project

from conftest import NOW, Clock, make_auction


def test_put_and_delete_auction(local_raftdb):
    db = local_raftdb
    a = make_auction(db, Clock())
    assert a.auction_id is not None
    assert db.get_auction(a.auction_id).title == "Brass lamp"

    assert db.delete_auction(a.auction_id) is True
    assert db.get_auction(a.auction_id) is None
    assert db.delete_auction(a.auction_id) is False


def test_insert_bid_compare_and_set(local_raftdb):
    db = local_raftdb
    a = make_auction(db, Clock())

    first = db.insert_bid(Bid(a.auction_id, "alice", Decimal("10"), NOW), None)
    assert first is not None
    # stale expectation: someone already holds the top bid
    assert db.insert_bid(Bid(a.auction_id, "bob", Decimal("11"), NOW), None) is None
    second = db.insert_bid(Bid(a.auction_id, "bob", Decimal("11"), NOW), first.bid_id)
    assert second is not None
    assert [b.bidder_id for b in db.list_bids(a.auction_id)] == ["alice", "bob"]


def test_notifications_replicate(local_raftdb):
    db = local_raftdb
    n = db.insert_notification(Notification(
        user_id="alice", auction_id=1, kind=NotificationKind.OUTBID,
        title="Brass lamp", timestamp=NOW))
    assert n.notification_id is not None
    assert db.count_unread_notifications("alice") == 1
    assert db.mark_notification_read("bob", n.notification_id) is False
    assert db.mark_notification_read("alice", n.notification_id) is True
    assert db.mark_all_notifications_read("alice") == 0
    assert db.list_notifications("alice", only_unread=True) == []


def test_bidding_over_replicated_store(local_raftdb):
    db = local_raftdb
    clock = Clock()
    a = make_auction(db, clock)
    service = BidPlacementService(db, NotificationDispatcher(db), clock=clock)

    service.place_bid("alice", a.auction_id, "10")
    clock.advance(seconds=1)
    service.place_bid("bob", a.auction_id, "12")

    view = project(db.get_auction(a.auction_id), db.list_bids(a.auction_id), "alice", clock())
    assert view.state is BidState.OUTBID
    assert view.current_highest_bid == Decimal("12")
    assert db.count_unread_notifications("alice") == 1


def _break_local_store(db, monkeypatch, *names):
    inner = db._ReplicatedAuctionStore__db

    def broken(*args, **kwargs):
        raise StoreUnavailable()
    for name in names:
        monkeypatch.setattr(inner, name, broken)


def test_failed_bid_apply_is_unavailable_not_conflict(local_raftdb, monkeypatch):
    db = local_raftdb
    clock = Clock()
    a = make_auction(db, clock)
    service = BidPlacementService(db, NotificationDispatcher(db), clock=clock, max_retries=3)
    _break_local_store(db, monkeypatch, "insert_bid")

    with pytest.raises(StoreUnavailable):
        service.place_bid("alice", a.auction_id, "10")


def test_failed_update_and_delete_are_unavailable(local_raftdb, monkeypatch):
    db = local_raftdb
    clock = Clock()
    a = make_auction(db, clock, owner="seller")
    auctions = AuctionService(db, clock=clock)
    _break_local_store(db, monkeypatch, "put_auction", "delete_auction")

    with pytest.raises(StoreUnavailable):
        auctions.update_auction("seller", a.auction_id, title="Copper lamp")
    with pytest.raises(StoreUnavailable):
        auctions.delete_auction("seller", a.auction_id)
    assert db.get_auction(a.auction_id).title == "Brass lamp"


def test_failed_notification_writes_are_unavailable(local_raftdb, monkeypatch):
    db = local_raftdb
    _break_local_store(db, monkeypatch, "mark_notification_read", "mark_all_notifications_read")

    with pytest.raises(StoreUnavailable):
        db.mark_notification_read("alice", 1)
    with pytest.raises(StoreUnavailable):
        db.mark_all_notifications_read("alice")
