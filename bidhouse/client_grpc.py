#!/usr/bin/env python3
"""
client_grpc.py

Fault-tolerant client for the auction gRPC service.  Given several server
addresses it fails over to the next one whenever a call comes back
``UNAVAILABLE``.
"""
import argparse
import json
import time

import grpc
import structlog

from bidhouse.server_grpc import SERVICE_NAME, USER_ID_HEADER, decode, encode

logger = structlog.get_logger()


class AuctionClient:
    def __init__(self, servers, user_id=None, max_retries=3, retry_delay=0.1, connect_timeout=5):
        self.servers = list(servers)
        self.idx = 0
        self.channel = None
        self.user_id = user_id
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.connect_timeout = connect_timeout
        self.last_error = None

    def log_msg(self, msg):
        logger.info("client", msg=msg)

    def connect(self):
        """
        Try each server until one is reachable.  Returns True on success.
        """
        for _ in range(len(self.servers)):
            addr = self.servers[self.idx]
            ch = grpc.insecure_channel(addr)
            try:
                grpc.channel_ready_future(ch).result(timeout=self.connect_timeout)
            except grpc.FutureTimeoutError:
                ch.close()
                self.log_msg(f"Connect failed to {addr}")
                self.idx = (self.idx + 1) % len(self.servers)
                continue
            if self.channel is not None:
                self.channel.close()
            self.channel = ch
            self.log_msg(f"Connected to {addr}")
            return True

        self.log_msg("ERROR: All servers unreachable")
        return False

    def close(self):
        if self.channel is not None:
            self.channel.close()
            self.channel = None

    def _metadata(self):
        return ((USER_ID_HEADER, self.user_id),) if self.user_id else ()

    def _unary(self, method):
        return self.channel.unary_unary(
            f"/{SERVICE_NAME}/{method}", request_serializer=encode, response_deserializer=decode)

    def safe_rpc(self, method, request):
        """
        Try up to max_retries.  On UNAVAILABLE, reconnect and retry.
        Other errors are recorded in ``last_error`` and ``None`` is returned.
        """
        self.last_error = None
        for _ in range(self.max_retries):
            if self.channel is None and not self.connect():
                time.sleep(self.retry_delay)
                continue
            try:
                return self._unary(method)(request, metadata=self._metadata())
            except grpc.RpcError as e:
                if e.code() == grpc.StatusCode.UNAVAILABLE:
                    self.log_msg("Servers are reconfiguring, retrying...")
                    self.idx = (self.idx + 1) % len(self.servers)
                    self.close()
                    time.sleep(self.retry_delay)
                    continue
                # non-transient
                details = e.details() if hasattr(e, 'details') else str(e)
                self.last_error = (e.code(), details)
                self.log_msg(f"Error: {details}")
                return None
        self.last_error = (grpc.StatusCode.UNAVAILABLE, "unavailable")
        self.log_msg("Servers still reconfiguring, please try again later.")
        return None

    # ---- convenience wrappers ----

    def create_auction(self, title, starting_price, end_date_time, description="", **extra):
        req = {"title": title, "description": description,
               "starting_price": str(starting_price), "end_date_time": end_date_time}
        req.update(extra)
        return self.safe_rpc("CreateAuction", req)

    def place_bid(self, auction_id, amount):
        return self.safe_rpc("PlaceBid", {"auction_id": auction_id, "amount": str(amount)})

    def get_auction(self, auction_id, detail=False):
        return self.safe_rpc("GetAuctionDetail" if detail else "GetAuction", {"auction_id": auction_id})

    def list_visible(self, page=1, page_size=None):
        resp = self.safe_rpc("ListVisible", {"page": page, "page_size": page_size})
        return resp["auctions"] if resp else None

    def notifications(self):
        resp = self.safe_rpc("ListNotifications", {})
        return resp["notifications"] if resp else None

    def unread_count(self):
        resp = self.safe_rpc("UnreadCount", {})
        return resp["unread_count"] if resp else None

    def mark_all_read(self):
        return self.safe_rpc("MarkAllNotificationsRead", {})

    def subscribe(self):
        """Yield outbid notifications as they are pushed by the server."""
        if self.channel is None:
            self.connect()
        stream = self.channel.unary_stream(
            f"/{SERVICE_NAME}/SubscribeNotifications",
            request_serializer=encode, response_deserializer=decode)
        yield from stream({}, metadata=self._metadata())


def main(argv=None):
    p = argparse.ArgumentParser(description="Auction service client")
    p.add_argument("--servers", default="127.0.0.1:50051", help="comma-separated server addresses")
    p.add_argument("--user", required=True, help="user id sent as x-user-id")
    sub = p.add_subparsers(dest="cmd", required=True)
    sub.add_parser("list")
    b = sub.add_parser("bid")
    b.add_argument("auction_id", type=int)
    b.add_argument("amount")
    s = sub.add_parser("show")
    s.add_argument("auction_id", type=int)
    sub.add_parser("notifications")
    args = p.parse_args(argv)

    client = AuctionClient(args.servers.split(","), user_id=args.user)
    if args.cmd == "list":
        out = client.list_visible()
    elif args.cmd == "bid":
        out = client.place_bid(args.auction_id, args.amount)
    elif args.cmd == "show":
        out = client.get_auction(args.auction_id, detail=True)
    else:
        out = client.notifications()
    client.close()
    print(json.dumps(out if out is not None else {"error": client.last_error and client.last_error[1]}, indent=2))


if __name__ == "__main__":
    main()
