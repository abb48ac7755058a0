"""models.py
=================================
Data shapes of the auction engine: auctions, bids, notifications and the
viewer-relative projection handed back to callers.

Monetary fields are :class:`decimal.Decimal`, timestamps are aware UTC
:class:`datetime.datetime` values.  None of these objects knows how it is
stored; :mod:`bidhouse.db` does the row mapping.
"""
from __future__ import annotations
import datetime
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Iterable, List, Optional

__all__ = [
    "AuctionState", "BidState", "NotificationKind",
    "Auction", "Bid", "Notification", "BidderProfile", "BidView",
    "ProjectedAuction", "highest_bid",
]

###############################################################################
# Enumerations
###############################################################################

class AuctionState(str, Enum):
    """Informational lifecycle flag.  Openness is always derived from the
    end time, never from this value."""

    ACTIVE = "Active"
    CLOSED = "Closed"
    CANCELLED = "Cancelled"


class BidState(str, Enum):
    """Bidding status of an auction as seen by one viewer."""

    IN_PROGRESS = "inProgress"
    WINNING = "winning"
    OUTBID = "outbid"
    DONE = "done"


class NotificationKind(str, Enum):
    OUTBID = "outbid"

###############################################################################
# Records
###############################################################################

@dataclass
class Auction:
    """A timed listing.

    Parameters
    ----------
    title, description
        Free text supplied by the creator.
    starting_price
        Floor for the first bid, non-negative.
    start_date_time, end_date_time
        UTC instants, ``end_date_time > start_date_time``.
    created_by
        User id of the owner; only the owner may mutate the auction.
    auction_id
        ``None`` until the store assigns one.
    """

    title: str
    description: str
    starting_price: Decimal
    start_date_time: datetime.datetime
    end_date_time: datetime.datetime
    created_by: str
    created_at: datetime.datetime
    updated_at: Optional[datetime.datetime] = None
    main_image_url: str = ""
    thumbnail_url: str = ""
    auction_state: AuctionState = AuctionState.ACTIVE
    auction_id: Optional[int] = None

    def is_open(self, now: datetime.datetime) -> bool:
        return self.end_date_time > now


@dataclass(frozen=True)
class Bid:
    """Immutable offer of ``amount`` by ``bidder_id`` on ``auction_id``."""

    auction_id: int
    bidder_id: str
    amount: Decimal
    created_at: datetime.datetime
    bid_id: Optional[int] = None


@dataclass
class Notification:
    """Message for ``user_id`` about ``auction_id``; ``title`` is the
    auction title at the time the notification was created."""

    user_id: str
    auction_id: int
    kind: NotificationKind
    title: str
    timestamp: datetime.datetime
    is_read: bool = False
    notification_id: Optional[int] = None

###############################################################################
# Projections
###############################################################################

@dataclass(frozen=True)
class BidderProfile:
    name: str
    profile_picture_url: Optional[str] = None


@dataclass(frozen=True)
class BidView:
    """A bid as listed on the auction detail page."""

    amount: Decimal
    created_at: datetime.datetime
    bidder_id: str
    user_name: str
    profile_picture_url: Optional[str] = None


@dataclass
class ProjectedAuction:
    """Auction fields plus the values derived for one viewer at one instant.

    ``state``, ``current_highest_bid`` and ``time_left`` are recomputed on
    every read and are never written back to the store.
    """

    auction: Auction
    state: BidState
    current_highest_bid: Decimal
    time_left: datetime.timedelta
    bids: List[BidView] = field(default_factory=list)

    @property
    def auction_id(self) -> Optional[int]:
        return self.auction.auction_id

###############################################################################
# Ordering rule
###############################################################################

def _rank(b: Bid):
    # larger amount first, then earliest bid, then lowest id
    return (-b.amount, b.created_at, b.bid_id if b.bid_id is not None else 0)


def highest_bid(bids: Iterable[Bid]) -> Optional[Bid]:
    """Return the current highest bid or ``None`` when there are no bids.

    Equal amounts should never happen because accepted bids strictly
    increase, but the tie-break is still fixed: the earliest bid wins, and
    on identical timestamps the lower id wins.
    """
    best = None
    for b in bids:
        if best is None or _rank(b) < _rank(best):
            best = b
    return best
