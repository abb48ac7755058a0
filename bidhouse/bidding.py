"""bidding.py
=================================
Bid placement: load, validate, compare-and-set insert, then notify the
bidder who just lost the lead.

Two bidders racing on the same auction both read the same highest bid,
but only one compare-and-set insert can succeed.  The loser reloads, is
validated again against the new floor and is either inserted on top of
it or rejected with :class:`~bidhouse.errors.BidTooLow`.
"""
from decimal import Decimal

import structlog

from bidhouse.bid_rules import Rejected, validate_bid
from bidhouse.errors import BidConflict, InvalidBid, NotFound
from bidhouse.models import Bid, highest_bid
from bidhouse.utils import to_money, utcnow

logger = structlog.get_logger()


class BidPlacementService:
    """
    Parameters
    ----------
    store
        Auction store exposing ``get_auction``, ``list_bids`` and the
        compare-and-set ``insert_bid``.
    dispatcher
        :class:`~bidhouse.notifications.NotificationDispatcher`.
    clock
        Zero-argument callable returning the current aware UTC datetime.
    max_retries
        How many compare-and-set attempts before giving up with
        :class:`~bidhouse.errors.BidConflict`.
    """

    def __init__(self, store, dispatcher, clock=utcnow, max_retries=5):
        self.store = store
        self.dispatcher = dispatcher
        self.clock = clock
        self.max_retries = max(1, max_retries)

    def place_bid(self, bidder_id, auction_id, amount) -> Bid:
        """Place a bid and return the stored :class:`Bid`.

        Raises :class:`NotFound`, :class:`InvalidBid`, :class:`BidTooLow`,
        :class:`AuctionClosed` or :class:`BidConflict`; on any of these
        nothing has been written.
        """
        try:
            amount = to_money(amount)
        except ValueError:
            raise InvalidBid()
        if amount <= Decimal(0):
            raise InvalidBid()

        log = logger.bind(auction_id=auction_id, bidder_id=bidder_id, amount=str(amount))

        for attempt in range(self.max_retries):
            auction = self.store.get_auction(auction_id)
            if auction is None:
                raise NotFound("Auction not found.")
            bids = self.store.list_bids(auction_id)
            now = self.clock()

            decision = validate_bid(auction, bids, amount, now)
            if isinstance(decision, Rejected):
                log.info("bid_rejected", reason=decision.reason.value, minimum=str(decision.minimum))
                raise decision.to_error()

            previous = highest_bid(bids)
            stored = self.store.insert_bid(
                Bid(auction_id=auction_id, bidder_id=bidder_id, amount=amount, created_at=now),
                previous.bid_id if previous else None,
            )
            if stored is None:
                log.debug("bid_conflict_retry", attempt=attempt + 1)
                continue

            log.info("bid_accepted", bid_id=stored.bid_id)
            if previous is not None and previous.bidder_id != bidder_id:
                self.dispatcher.dispatch_outbid(previous.bidder_id, auction, now)
            return stored

        log.warning("bid_conflict_exhausted", attempts=self.max_retries)
        raise BidConflict()
