import grpc

from bidhouse.client_grpc import AuctionClient


class Unavailable(grpc.RpcError):
    def code(self):
        return grpc.StatusCode.UNAVAILABLE

    def details(self):
        return "temporary"


class Rejected(grpc.RpcError):
    def code(self):
        return grpc.StatusCode.FAILED_PRECONDITION

    def details(self):
        return "Bid amount must be at least 11."


def make_client(rpc, servers=("a:1", "b:2")):
    """AuctionClient whose transport is the callable ``rpc``."""
    c = AuctionClient(servers, user_id="alice", max_retries=3, retry_delay=0.0)
    c.log_lines = []
    c.log_msg = c.log_lines.append
    c.calls = []

    def connect():
        c.channel = object()
        return True
    c.connect = connect

    def unary(method):
        def call(req, metadata=()):
            c.calls.append((method, req, metadata, c.idx))
            return rpc(method, req)
        return call
    c._unary = unary
    c.close = lambda: setattr(c, "channel", None)
    return c


def test_safe_rpc_fails_over_then_succeeds():
    state = {"n": 0}

    def flappy(method, req):
        if state["n"] == 0:
            state["n"] += 1
            raise Unavailable()
        return {"ok": True}

    client = make_client(flappy)
    assert client.safe_rpc("ListVisible", {}) == {"ok": True}
    assert any("retrying" in s.lower() for s in client.log_lines)
    # second attempt went to the next server
    assert [idx for *_, idx in client.calls] == [0, 1]
    assert client.last_error is None


def test_safe_rpc_all_unavailable():
    def always(method, req):
        raise Unavailable()

    client = make_client(always)
    assert client.safe_rpc("ListVisible", {}) is None
    assert len(client.calls) == 3
    assert client.last_error[0] is grpc.StatusCode.UNAVAILABLE
    assert any("try again later" in s.lower() for s in client.log_lines)


def test_non_transient_error_is_recorded_not_retried():
    def reject(method, req):
        raise Rejected()

    client = make_client(reject)
    assert client.place_bid(7, "10") is None
    assert len(client.calls) == 1
    assert client.last_error == (grpc.StatusCode.FAILED_PRECONDITION, "Bid amount must be at least 11.")


def test_wrappers_send_identity_and_payload():
    client = make_client(lambda method, req: {"auctions": [], "unread_count": 4})
    client.place_bid(7, 12.5)
    assert client.list_visible(page=2) == []
    assert client.unread_count() == 4

    method, req, metadata, _ = client.calls[0]
    assert method == "PlaceBid"
    assert req == {"auction_id": 7, "amount": "12.5"}
    assert ("x-user-id", "alice") in metadata
    assert client.calls[1][1] == {"page": 2, "page_size": None}


def test_anonymous_client_sends_no_identity():
    client = make_client(lambda method, req: {"auctions": []})
    client.user_id = None
    client.list_visible()
    assert client.calls[0][2] == ()


def test_connect_gives_up_when_nothing_listens(monkeypatch):
    class NeverReady:
        def result(self, timeout=None):
            raise grpc.FutureTimeoutError()

    monkeypatch.setattr(grpc, "channel_ready_future", lambda ch: NeverReady())
    client = AuctionClient(["127.0.0.1:1", "127.0.0.1:2"], connect_timeout=0.01)
    client.log_lines = []
    client.log_msg = client.log_lines.append

    assert client.connect() is False
    assert client.channel is None
    assert client.idx == 0
    assert client.log_lines[-1] == "ERROR: All servers unreachable"
