"""projector.py
=================================
Viewer-relative view of an auction.

:func:`project` is a pure function of an auction, its bids, the viewer and
a wall-clock reading.  Nothing it returns is persisted.
"""
from __future__ import annotations
import datetime
from typing import Optional, Sequence

from bidhouse.models import Auction, Bid, BidState, ProjectedAuction, highest_bid

__all__ = ["viewer_state", "project"]

_ZERO = datetime.timedelta(0)


def viewer_state(auction: Auction, bids: Sequence[Bid], viewer_id: Optional[str],
                 now: datetime.datetime) -> BidState:
    """First matching rule wins:

    1. auction ended                      -> ``done``
    2. anonymous viewer                   -> ``inProgress``
    3. viewer has not bid                 -> ``inProgress``
    4. viewer's largest bid is the top bid -> ``winning``
    5. otherwise                          -> ``outbid``
    """
    if auction.end_date_time <= now:
        return BidState.DONE
    if viewer_id is None:
        return BidState.IN_PROGRESS
    own = [b for b in bids if b.bidder_id == viewer_id]
    if not own:
        return BidState.IN_PROGRESS
    top = highest_bid(bids)
    if top is not None and top.bidder_id == viewer_id:
        return BidState.WINNING
    return BidState.OUTBID


def project(auction: Auction, bids: Sequence[Bid], viewer_id: Optional[str],
            now: datetime.datetime) -> ProjectedAuction:
    top = highest_bid(bids)
    return ProjectedAuction(
        auction=auction,
        state=viewer_state(auction, bids, viewer_id, now),
        current_highest_bid=top.amount if top else auction.starting_price,
        time_left=max(_ZERO, auction.end_date_time - now),
    )
