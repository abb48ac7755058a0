"""bid_rules.py
=================================
Accept/reject rule for a proposed bid.

The floor is the starting price while an auction has no bids and one
currency unit above the highest bid afterwards.  There is no ceiling and
no rule against a bidder raising their own bid.
"""
from __future__ import annotations
import datetime
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Iterable, Union

from bidhouse.errors import AuctionClosed, AuctionError, BidTooLow
from bidhouse.models import Auction, Bid, highest_bid

__all__ = [
    "BID_INCREMENT", "RejectReason", "Accepted", "Rejected",
    "minimum_acceptable_bid", "validate_bid",
]

BID_INCREMENT = Decimal(1)


class RejectReason(str, Enum):
    BID_TOO_LOW = "BidTooLow"
    AUCTION_CLOSED = "AuctionClosed"


@dataclass(frozen=True)
class Accepted:
    minimum: Decimal


@dataclass(frozen=True)
class Rejected:
    reason: RejectReason
    minimum: Decimal

    def to_error(self) -> AuctionError:
        if self.reason is RejectReason.AUCTION_CLOSED:
            return AuctionClosed()
        return BidTooLow(self.minimum)


def minimum_acceptable_bid(auction: Auction, existing_bids: Iterable[Bid]) -> Decimal:
    top = highest_bid(existing_bids)
    if top is None:
        return auction.starting_price
    return top.amount + BID_INCREMENT


def validate_bid(auction: Auction, existing_bids: Iterable[Bid],
                 proposed_amount: Decimal,
                 now: datetime.datetime) -> Union[Accepted, Rejected]:
    """Decide whether ``proposed_amount`` may be placed at instant ``now``.

    A closed auction is reported before a low amount so a late bidder is
    told the auction ended rather than asked for more money.
    """
    minimum = minimum_acceptable_bid(auction, existing_bids)
    if not auction.is_open(now):
        return Rejected(RejectReason.AUCTION_CLOSED, minimum)
    if proposed_amount < minimum:
        return Rejected(RejectReason.BID_TOO_LOW, minimum)
    return Accepted(minimum)
