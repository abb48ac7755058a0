"""auctions.py
=================================
Owner-side auction operations (create, update, delete) and single-auction
reads, plain or with the bid history resolved to bidder names.

Field checks stop at presence and the two data invariants
(``starting_price >= 0`` and ``end_date_time > start_date_time``).
"""
from dataclasses import replace
from decimal import Decimal

import structlog

from bidhouse.errors import Forbidden, InvalidAuction, NotFound
from bidhouse.models import Auction, AuctionState, BidderProfile, BidView
from bidhouse.projector import project
from bidhouse.utils import from_iso, to_money, utcnow

logger = structlog.get_logger()


def _as_instant(value, field_name):
    if value is None or hasattr(value, "tzinfo"):
        ts = value
    else:
        try:
            ts = from_iso(value)
        except (TypeError, ValueError):
            raise InvalidAuction(f"{field_name} is not a valid timestamp.")
    if ts is None:
        raise InvalidAuction(f"{field_name} is required.")
    if ts.tzinfo is None:
        raise InvalidAuction(f"{field_name} must carry a UTC offset.")
    return ts


def _as_price(value):
    if value is None:
        raise InvalidAuction("Starting price is required.")
    try:
        price = to_money(value)
    except ValueError:
        raise InvalidAuction("Starting price is not a valid amount.")
    if price < Decimal(0):
        raise InvalidAuction("Starting price cannot be negative.")
    return price


def _check(auction: Auction):
    if not (auction.title or "").strip():
        raise InvalidAuction("Title is required.")
    if auction.end_date_time <= auction.start_date_time:
        raise InvalidAuction("End time must be after start time.")


class AuctionService:
    """
    Parameters
    ----------
    store
        Auction store.
    clock
        Zero-argument callable returning the current aware UTC datetime.
    directory
        Mapping of user id to :class:`~bidhouse.models.BidderProfile`,
        provided by the identity side of the application.  Missing users
        are shown by their id.
    """

    def __init__(self, store, clock=utcnow, directory=None):
        self.store = store
        self.clock = clock
        self.directory = directory if directory is not None else {}

    def _owned(self, user_id, auction_id) -> Auction:
        auction = self.store.get_auction(auction_id)
        if auction is None:
            raise NotFound("Auction not found.")
        if auction.created_by != user_id:
            raise Forbidden()
        return auction

    def create_auction(self, user_id, title, description, starting_price, end_date_time,
                       start_date_time=None, main_image_url="", thumbnail_url=""):
        now = self.clock()
        auction = Auction(
            title=title,
            description=description or "",
            starting_price=_as_price(starting_price),
            start_date_time=now if start_date_time is None else _as_instant(start_date_time, "Start time"),
            end_date_time=_as_instant(end_date_time, "End time"),
            created_by=user_id,
            created_at=now,
            main_image_url=main_image_url or "",
            thumbnail_url=thumbnail_url or "",
            auction_state=AuctionState.ACTIVE,
        )
        _check(auction)
        stored = self.store.put_auction(auction)
        logger.info("auction_created", auction_id=stored.auction_id, created_by=user_id)
        return project(stored, [], user_id, now)

    def update_auction(self, user_id, auction_id, title=None, description=None,
                       starting_price=None, start_date_time=None, end_date_time=None,
                       main_image_url=None, thumbnail_url=None):
        """Owner-only edit.  Arguments left as ``None`` keep their value."""
        auction = self._owned(user_id, auction_id)
        now = self.clock()
        changes = {"updated_at": now}
        if title is not None:
            changes["title"] = title
        if description is not None:
            changes["description"] = description
        if starting_price is not None:
            changes["starting_price"] = _as_price(starting_price)
        if start_date_time is not None:
            changes["start_date_time"] = _as_instant(start_date_time, "Start time")
        if end_date_time is not None:
            changes["end_date_time"] = _as_instant(end_date_time, "End time")
        if main_image_url is not None:
            changes["main_image_url"] = main_image_url
        if thumbnail_url is not None:
            changes["thumbnail_url"] = thumbnail_url

        updated = replace(auction, **changes)
        _check(updated)
        stored = self.store.put_auction(updated)
        if stored is None:
            raise NotFound("Auction not found.")
        logger.info("auction_updated", auction_id=auction_id, fields=sorted(changes))
        return project(stored, self.store.list_bids(auction_id), user_id, now)

    def delete_auction(self, user_id, auction_id):
        self._owned(user_id, auction_id)
        if not self.store.delete_auction(auction_id):
            raise NotFound("Auction not found.")
        logger.info("auction_deleted", auction_id=auction_id, deleted_by=user_id)

    def get_auction(self, auction_id, viewer_id=None):
        auction = self.store.get_auction(auction_id)
        if auction is None:
            raise NotFound("Auction not found.")
        return project(auction, self.store.list_bids(auction_id), viewer_id, self.clock())

    def get_auction_detail(self, auction_id, viewer_id=None):
        """Like :meth:`get_auction` with the bid history attached, newest
        bid first."""
        auction = self.store.get_auction(auction_id)
        if auction is None:
            raise NotFound("Auction not found.")
        bids = self.store.list_bids(auction_id)
        view = project(auction, bids, viewer_id, self.clock())
        for b in reversed(bids):
            profile = self.directory.get(b.bidder_id) or BidderProfile(name=b.bidder_id)
            view.bids.append(BidView(
                amount=b.amount,
                created_at=b.created_at,
                bidder_id=b.bidder_id,
                user_name=profile.name,
                profile_picture_url=profile.profile_picture_url,
            ))
        return view
