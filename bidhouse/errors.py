"""errors.py
================
Typed failures of the auction engine.

Every error carries a ``message`` that is safe to show to an end user.
Storage details never end up in that text; :class:`StoreUnavailable` keeps
the underlying exception as ``__cause__`` for the logs only.
"""
from decimal import Decimal

__all__ = [
    "AuctionError", "NotFound", "Forbidden", "InvalidAuction",
    "InvalidBid", "BidTooLow", "AuctionClosed", "Conflict", "BidConflict",
    "StoreUnavailable", "InvalidPage",
]


class AuctionError(Exception):
    """Base class for every failure the engine reports to its callers."""

    default_message = "Request could not be completed."

    def __init__(self, message=None):
        self.message = message or self.default_message
        super().__init__(self.message)


class NotFound(AuctionError):
    default_message = "Not found."


class Forbidden(AuctionError):
    default_message = "You are not allowed to modify this auction."


class InvalidAuction(AuctionError):
    default_message = "Auction fields are invalid."


class BidTooLow(AuctionError):
    """Proposed amount is under the floor; ``minimum`` is the floor."""

    def __init__(self, minimum: Decimal):
        self.minimum = minimum
        super().__init__(f"Bid amount must be at least {minimum}.")


class AuctionClosed(AuctionError):
    default_message = "This auction has already ended."


class Conflict(AuctionError):
    default_message = "The resource was modified concurrently."


class BidConflict(Conflict):
    default_message = "Too many concurrent bids on this auction, please try again."


class StoreUnavailable(AuctionError):
    default_message = "The auction service is temporarily unavailable."


class InvalidBid(AuctionError):
    default_message = "Bid amount must be a positive number."


class InvalidPage(AuctionError):
    default_message = "Page and page size must be whole numbers."
