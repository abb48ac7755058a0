import datetime
import itertools
from decimal import Decimal

from bidhouse.models import Auction, Bid, BidState, highest_bid
from bidhouse.projector import project, viewer_state

NOW = datetime.datetime(2025, 6, 1, 12, 0, tzinfo=datetime.timezone.utc)
HOUR = datetime.timedelta(hours=1)


def _auction(ends=NOW + HOUR, price="10"):
    return Auction(title="Vase", description="", starting_price=Decimal(price),
                   start_date_time=NOW - 24 * HOUR, end_date_time=ends,
                   created_by="seller", created_at=NOW - 24 * HOUR, auction_id=7)


def _bids(*pairs):
    return [Bid(auction_id=7, bidder_id=who, amount=Decimal(amt),
                created_at=NOW - HOUR + i * datetime.timedelta(minutes=1), bid_id=i + 1)
            for i, (who, amt) in enumerate(pairs)]


def test_states_follow_rule_order():
    bids = _bids(("a", "10"), ("b", "15"))
    open_auction = _auction()
    assert viewer_state(open_auction, bids, None, NOW) is BidState.IN_PROGRESS
    assert viewer_state(open_auction, bids, "c", NOW) is BidState.IN_PROGRESS
    assert viewer_state(open_auction, bids, "a", NOW) is BidState.OUTBID
    assert viewer_state(open_auction, bids, "b", NOW) is BidState.WINNING
    assert viewer_state(_auction(ends=NOW), bids, "b", NOW) is BidState.DONE


def test_every_viewer_gets_exactly_one_state():
    auctions = [_auction(), _auction(ends=NOW - HOUR)]
    bid_sets = [[], _bids(("a", "10")), _bids(("a", "10"), ("b", "12"), ("a", "14"))]
    for a, bids, viewer in itertools.product(auctions, bid_sets, [None, "a", "b", "z"]):
        assert viewer_state(a, bids, viewer, NOW) in set(BidState)


def test_summary_fields():
    view = project(_auction(), [], "a", NOW)
    assert view.current_highest_bid == Decimal("10")
    assert view.time_left == HOUR

    view = project(_auction(ends=NOW - HOUR), _bids(("a", "30")), "a", NOW)
    assert view.current_highest_bid == Decimal("30")
    assert view.time_left == datetime.timedelta(0)
    assert view.state is BidState.DONE


def test_highest_bid_tie_goes_to_earliest():
    early, late = _bids(("a", "20"), ("b", "20"))
    assert highest_bid([late, early]) is early
    assert highest_bid([]) is None
