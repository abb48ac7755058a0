import datetime
import random
import time
from decimal import Decimal

import pytest

from bidhouse.auctions import AuctionService
from bidhouse.bidding import BidPlacementService
from bidhouse.db import AuctionStore
from bidhouse.listing import ListingQueryService
from bidhouse.models import Auction
from bidhouse.notifications import NotificationDispatcher

NOW = datetime.datetime(2025, 6, 1, 12, 0, tzinfo=datetime.timezone.utc)
HOUR = datetime.timedelta(hours=1)


class Clock:
    """Settable stand-in for utcnow()."""

    def __init__(self, now=NOW):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kw):
        self.now = self.now + datetime.timedelta(**kw)


def make_auction(store, clock, owner="seller", price="10", ends_in=HOUR, title="Brass lamp"):
    """Store an auction directly, bypassing create-time checks so tests can
    put the end time in the past."""
    end = clock() + ends_in
    return store.put_auction(Auction(
        title=title,
        description="",
        starting_price=Decimal(price),
        start_date_time=end - 48 * HOUR,
        end_date_time=end,
        created_by=owner,
        created_at=clock(),
    ))


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def store():
    s = AuctionStore(":memory:")
    yield s
    s.close()


@pytest.fixture
def dispatcher(store):
    return NotificationDispatcher(store)


@pytest.fixture
def bidding(store, dispatcher, clock):
    return BidPlacementService(store, dispatcher, clock=clock)


@pytest.fixture
def listing(store, clock):
    return ListingQueryService(store, clock=clock)


@pytest.fixture
def auctions(store, clock):
    return AuctionService(store, clock=clock)


@pytest.fixture
def local_raftdb(tmp_path):
    from bidhouse.raft_db import ReplicatedAuctionStore

    db = ReplicatedAuctionStore(
        self_address=f"localhost:{random.randint(40000, 50000)}",
        other_addresses=[],
        db_path=str(tmp_path / "replica.db"))
    t0 = time.time()
    while not db.isReady() and time.time() - t0 < 10:
        time.sleep(0.05)
    if not db.isReady():
        db.destroy()
        pytest.skip("single-node raft replica did not become ready")
    yield db
    db.close()
    db.destroy()
