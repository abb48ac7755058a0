#!/usr/bin/env python3
"""
server_grpc.py

gRPC front of the auction engine.  Messages are JSON objects carried by
gRPC generic handlers, so no generated stubs are needed on either side.

The caller's user id arrives as ``x-user-id`` invocation metadata, set by
the identity layer in front of this service.  Typed engine errors map to
gRPC status codes; anything else is logged and reported as a generic
internal error without details.
"""
import argparse
import datetime
import json
import queue
import signal
import sys
from concurrent import futures
from decimal import Decimal
from enum import Enum

import grpc
import structlog

from bidhouse.auctions import AuctionService
from bidhouse.bidding import BidPlacementService
from bidhouse.config import get_settings
from bidhouse.db import AuctionStore
from bidhouse.errors import (
    AuctionClosed, AuctionError, BidConflict, BidTooLow, Conflict, Forbidden,
    InvalidAuction, InvalidBid, InvalidPage, NotFound, StoreUnavailable,
)
from bidhouse.listing import ListingQueryService
from bidhouse.log import configure_logging
from bidhouse.notifications import NotificationDispatcher
from bidhouse.utils import to_iso, utcnow

logger = structlog.get_logger()

SERVICE_NAME = "bidhouse.AuctionService"
USER_ID_HEADER = "x-user-id"
INTERNAL_ERROR_MESSAGE = "Internal server error."

_STATUS = [
    (NotFound, grpc.StatusCode.NOT_FOUND),
    (Forbidden, grpc.StatusCode.PERMISSION_DENIED),
    (InvalidAuction, grpc.StatusCode.INVALID_ARGUMENT),
    (InvalidBid, grpc.StatusCode.INVALID_ARGUMENT),
    (InvalidPage, grpc.StatusCode.INVALID_ARGUMENT),
    (BidTooLow, grpc.StatusCode.FAILED_PRECONDITION),
    (AuctionClosed, grpc.StatusCode.FAILED_PRECONDITION),
    (BidConflict, grpc.StatusCode.ABORTED),
    (Conflict, grpc.StatusCode.ALREADY_EXISTS),
    (StoreUnavailable, grpc.StatusCode.UNAVAILABLE),
]

# ------------------ JSON codec ------------------

def _json_default(o):
    if isinstance(o, Decimal):
        return str(o)
    if isinstance(o, datetime.datetime):
        return to_iso(o)
    if isinstance(o, datetime.timedelta):
        return int(o.total_seconds())
    if isinstance(o, Enum):
        return o.value
    raise TypeError(f"{type(o).__name__} is not JSON serializable")


def encode(message) -> bytes:
    return json.dumps(message, default=_json_default).encode("utf-8")


def decode(data: bytes):
    return json.loads(data.decode("utf-8")) if data else {}


def bid_to_dict(bid):
    return {
        "bid_id": bid.bid_id,
        "auction_id": bid.auction_id,
        "bidder_id": bid.bidder_id,
        "amount": bid.amount,
        "created_at": bid.created_at,
    }


def auction_to_dict(view):
    a = view.auction
    out = {
        "auction_id": a.auction_id,
        "title": a.title,
        "description": a.description,
        "starting_price": a.starting_price,
        "start_date_time": a.start_date_time,
        "end_date_time": a.end_date_time,
        "auction_state": a.auction_state,
        "created_by": a.created_by,
        "created_at": a.created_at,
        "updated_at": a.updated_at,
        "main_image_url": a.main_image_url,
        "thumbnail_url": a.thumbnail_url,
        "state": view.state,
        "current_highest_bid": view.current_highest_bid,
        "time_left": view.time_left,
    }
    if view.bids:
        out["bids"] = [{
            "amount": b.amount,
            "created_at": b.created_at,
            "bidder_id": b.bidder_id,
            "user_name": b.user_name,
            "profile_picture_url": b.profile_picture_url,
        } for b in view.bids]
    return out


def notification_to_dict(n):
    return {
        "notification_id": n.notification_id,
        "user_id": n.user_id,
        "auction_id": n.auction_id,
        "kind": n.kind,
        "title": n.title,
        "timestamp": n.timestamp,
        "is_read": n.is_read,
    }


def log_data_usage(method_name: str, request_size: int, response_size: int):
    logger.debug("rpc_data_usage", method=method_name,
                 request_size=request_size, response_size=response_size)

# ------------------ wiring ------------------

class Marketplace:
    """All engine services bound to one store."""

    def __init__(self, store, settings=None, clock=utcnow, directory=None, executor=None):
        settings = settings or get_settings()
        if executor is None and settings.notify_async:
            executor = futures.ThreadPoolExecutor(max_workers=2, thread_name_prefix="notify")
        self.store = store
        self.notifications = NotificationDispatcher(store, executor=executor)
        self.bidding = BidPlacementService(store, self.notifications, clock=clock,
                                           max_retries=settings.bid_retries)
        self.listing = ListingQueryService(store, clock=clock,
                                           grace=datetime.timedelta(hours=settings.grace_hours),
                                           page_size=settings.page_size)
        self.auctions = AuctionService(store, clock=clock, directory=directory)

    def close(self):
        self.notifications.shutdown(wait=True)

# ------------------ servicer ------------------

class AuctionServicer:
    def __init__(self, market: Marketplace):
        self.market = market

    @staticmethod
    def _caller(context, required=True):
        md = dict(context.invocation_metadata() or ())
        user_id = md.get(USER_ID_HEADER) or None
        if required and user_id is None:
            context.abort(grpc.StatusCode.UNAUTHENTICATED, "Sign in required.")
        return user_id

    @staticmethod
    def _abort(context, err: AuctionError):
        code = grpc.StatusCode.UNKNOWN
        for cls, status in _STATUS:
            if isinstance(err, cls):
                code = status
                break
        if isinstance(err, BidTooLow):
            context.set_trailing_metadata((("minimum-bid", str(err.minimum)),))
        context.abort(code, err.message)

    def _run(self, name, request, context, fn):
        try:
            resp = fn()
        except AuctionError as e:
            self._abort(context, e)
        except Exception:
            logger.exception("rpc_failed", method=name)
            context.abort(grpc.StatusCode.INTERNAL, INTERNAL_ERROR_MESSAGE)
        log_data_usage(name, len(encode(request)), len(encode(resp)))
        return resp

    # ---- auctions ----

    def CreateAuction(self, req, ctx):
        user_id = self._caller(ctx)
        return self._run("CreateAuction", req, ctx, lambda: auction_to_dict(
            self.market.auctions.create_auction(
                user_id,
                title=req.get("title"),
                description=req.get("description", ""),
                starting_price=req.get("starting_price"),
                start_date_time=req.get("start_date_time"),
                end_date_time=req.get("end_date_time"),
                main_image_url=req.get("main_image_url", ""),
                thumbnail_url=req.get("thumbnail_url", ""),
            )))

    def UpdateAuction(self, req, ctx):
        user_id = self._caller(ctx)
        fields = {k: req.get(k) for k in (
            "title", "description", "starting_price", "start_date_time",
            "end_date_time", "main_image_url", "thumbnail_url")}
        return self._run("UpdateAuction", req, ctx, lambda: auction_to_dict(
            self.market.auctions.update_auction(user_id, req.get("auction_id"), **fields)))

    def DeleteAuction(self, req, ctx):
        user_id = self._caller(ctx)

        def delete():
            self.market.auctions.delete_auction(user_id, req.get("auction_id"))
            return {"status": "success", "message": "Auction deleted."}
        return self._run("DeleteAuction", req, ctx, delete)

    def GetAuction(self, req, ctx):
        viewer = self._caller(ctx, required=False)
        return self._run("GetAuction", req, ctx, lambda: auction_to_dict(
            self.market.auctions.get_auction(req.get("auction_id"), viewer)))

    def GetAuctionDetail(self, req, ctx):
        viewer = self._caller(ctx, required=False)
        return self._run("GetAuctionDetail", req, ctx, lambda: auction_to_dict(
            self.market.auctions.get_auction_detail(req.get("auction_id"), viewer)))

    # ---- bids ----

    def PlaceBid(self, req, ctx):
        user_id = self._caller(ctx)
        return self._run("PlaceBid", req, ctx, lambda: bid_to_dict(
            self.market.bidding.place_bid(user_id, req.get("auction_id"), req.get("amount"))))

    # ---- listings ----

    def ListVisible(self, req, ctx):
        viewer = self._caller(ctx, required=False)
        return self._run("ListVisible", req, ctx, lambda: {"auctions": [
            auction_to_dict(v) for v in self.market.listing.list_visible(
                viewer, page=req.get("page", 1), page_size=req.get("page_size"))]})

    def ListByCreator(self, req, ctx):
        user_id = self._caller(ctx)
        return self._run("ListByCreator", req, ctx, lambda: {"auctions": [
            auction_to_dict(v) for v in self.market.listing.by_creator(user_id)]})

    def ListBidding(self, req, ctx):
        user_id = self._caller(ctx)
        return self._run("ListBidding", req, ctx, lambda: {"auctions": [
            auction_to_dict(v) for v in self.market.listing.bidding(user_id)]})

    def ListWon(self, req, ctx):
        user_id = self._caller(ctx)
        return self._run("ListWon", req, ctx, lambda: {"auctions": [
            auction_to_dict(v) for v in self.market.listing.won(user_id)]})

    # ---- notifications ----

    def ListNotifications(self, req, ctx):
        user_id = self._caller(ctx)
        return self._run("ListNotifications", req, ctx, lambda: {"notifications": [
            notification_to_dict(n) for n in self.market.notifications.list_for_user(user_id)]})

    def MarkNotificationRead(self, req, ctx):
        user_id = self._caller(ctx)

        def mark():
            self.market.notifications.mark_read(user_id, req.get("notification_id"))
            return {"status": "success"}
        return self._run("MarkNotificationRead", req, ctx, mark)

    def MarkAllNotificationsRead(self, req, ctx):
        user_id = self._caller(ctx)

        def mark_all():
            self.market.notifications.mark_all_read(user_id)
            return {"status": "success"}
        return self._run("MarkAllNotificationsRead", req, ctx, mark_all)

    def UnreadCount(self, req, ctx):
        user_id = self._caller(ctx)
        return self._run("UnreadCount", req, ctx, lambda: {
            "unread_count": self.market.notifications.unread_count(user_id)})

    def SubscribeNotifications(self, req, ctx):
        # no data usage accounting for streams
        user_id = self._caller(ctx)
        q = self.market.notifications.add_subscriber(user_id)
        try:
            while ctx.is_active():
                try:
                    n = q.get(timeout=0.5)
                except queue.Empty:
                    continue
                yield notification_to_dict(n)
        finally:
            self.market.notifications.remove_subscriber(user_id, q)


UNARY_METHODS = (
    "CreateAuction", "UpdateAuction", "DeleteAuction", "GetAuction",
    "GetAuctionDetail", "PlaceBid", "ListVisible", "ListByCreator",
    "ListBidding", "ListWon", "ListNotifications", "MarkNotificationRead",
    "MarkAllNotificationsRead", "UnreadCount",
)
STREAM_METHODS = ("SubscribeNotifications",)


def generic_handler(servicer: AuctionServicer):
    handlers = {}
    for name in UNARY_METHODS:
        handlers[name] = grpc.unary_unary_rpc_method_handler(
            getattr(servicer, name), request_deserializer=decode, response_serializer=encode)
    for name in STREAM_METHODS:
        handlers[name] = grpc.unary_stream_rpc_method_handler(
            getattr(servicer, name), request_deserializer=decode, response_serializer=encode)
    return grpc.method_handlers_generic_handler(SERVICE_NAME, handlers)


def create_server(market: Marketplace, port: int = 0, host: str = "[::]", max_workers: int = 10):
    """
    Wrap the services around ``market`` and start a gRPC server.  Returns
    ``(server, bound_port)``; pass ``port=0`` to let the OS pick one.
    """
    server = grpc.server(futures.ThreadPoolExecutor(max_workers=max_workers))
    server.add_generic_rpc_handlers((generic_handler(AuctionServicer(market)),))
    bound = server.add_insecure_port(f"{host}:{port}")
    server.start()
    logger.info("grpc_server_started", address=f"{host}:{bound}")
    return server, bound


def open_store(args, settings):
    """Local SQLite store, or a Raft replica when ``--raft-port`` is set."""
    if args.raft_port is None:
        return AuctionStore(args.db_path or settings.db_path)
    from bidhouse.raft_db import ReplicatedAuctionStore
    peers = [p for p in (args.peers or "").split(",") if p]
    db_path = args.db_path or f"node{args.node_id}.db"
    return ReplicatedAuctionStore(f"{args.host}:{args.raft_port}", peers, db_path)


def parse_args(argv=None):
    settings = get_settings()
    p = argparse.ArgumentParser(description="Start the auction gRPC server.")
    p.add_argument("--host", default=settings.host,
                   help="Host (interface) to bind to, e.g. 0.0.0.0 or 127.0.0.1")
    p.add_argument("--port", type=int, default=settings.port,
                   help="Port to bind the server on.")
    p.add_argument("--db-path", default=None, help="SQLite file for this node")
    p.add_argument("--node-id", type=int, default=0)
    p.add_argument("--raft-port", type=int, default=None,
                   help="Enable Raft replication on this port")
    p.add_argument("--peers", default="", help="comma-separated raft peer addresses")
    p.add_argument("--max-workers", type=int, default=settings.max_workers)
    return p.parse_args(argv)


def main(argv=None):
    settings = get_settings()
    configure_logging(settings.log_level, settings.log_format)
    args = parse_args(argv)

    store = open_store(args, settings)
    market = Marketplace(store, settings)
    server, port = create_server(market, args.port, args.host, args.max_workers)

    def handle_shutdown(signum, frame):
        logger.info("grpc_server_stopping", node_id=args.node_id)
        server.stop(5)
        market.close()
        store.close()
        sys.exit(0)
    signal.signal(signal.SIGINT, handle_shutdown)
    signal.signal(signal.SIGTERM, handle_shutdown)

    server.wait_for_termination()


if __name__ == "__main__":
    main()
