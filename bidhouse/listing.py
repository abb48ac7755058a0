"""listing.py
=================================
Which auctions a viewer gets to see, each passed through
:func:`bidhouse.projector.project` for that viewer.
"""
import datetime

from bidhouse.errors import InvalidPage
from bidhouse.models import highest_bid
from bidhouse.projector import project
from bidhouse.utils import utcnow

DEFAULT_GRACE = datetime.timedelta(hours=24)


def _page_number(value, default):
    if value is None or value == "":
        return default
    try:
        return max(1, int(value))
    except (TypeError, ValueError):
        raise InvalidPage()


class ListingQueryService:
    """
    Parameters
    ----------
    store
        Auction store.
    clock
        Zero-argument callable returning the current aware UTC datetime.
    grace
        How long an ended auction stays in a past bidder's active listing.
    page_size
        Page size used when a caller does not pass one.
    """

    def __init__(self, store, clock=utcnow, grace=DEFAULT_GRACE, page_size=9):
        self.store = store
        self.clock = clock
        self.grace = grace
        self.page_size = page_size

    def _project_all(self, auctions, viewer_id, now):
        return [project(a, self.store.list_bids(a.auction_id), viewer_id, now) for a in auctions]

    def list_visible(self, viewer_id=None, page=1, page_size=None):
        """Open auctions, plus (for a signed-in viewer) auctions that ended
        within the grace window and carry at least one of the viewer's
        bids.  Soonest-ending first, 1-based pages; out-of-range page
        numbers and sizes are clamped to 1, non-numeric ones raise
        :class:`~bidhouse.errors.InvalidPage`."""
        page = _page_number(page, 1)
        page_size = _page_number(page_size, self.page_size)
        now = self.clock()
        auctions = self.store.list_visible_auctions(
            now=now,
            grace_start=now - self.grace,
            viewer_id=viewer_id,
            limit=page_size,
            offset=(page - 1) * page_size,
        )
        return self._project_all(auctions, viewer_id, now)

    def by_creator(self, user_id):
        """Everything ``user_id`` created, newest first, any state."""
        now = self.clock()
        return self._project_all(self.store.list_auctions_by_creator(user_id), user_id, now)

    def bidding(self, user_id):
        """Other people's auctions ``user_id`` has bid on, soonest-ending first."""
        now = self.clock()
        auctions = self.store.list_auctions_bid_on(user_id, exclude_own=True)
        return self._project_all(auctions, user_id, now)

    def won(self, user_id):
        """Ended auctions whose highest bid belongs to ``user_id``,
        newest-ended first."""
        now = self.clock()
        results = []
        for a in self.store.list_auctions_bid_on(user_id, ended_before=now):
            bids = self.store.list_bids(a.auction_id)
            top = highest_bid(bids)
            if top is not None and top.bidder_id == user_id:
                results.append(project(a, bids, user_id, now))
        return results
