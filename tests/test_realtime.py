import asyncio

from auth.api import Identity
from realtime.server import BACCARAT_NS, SocketEmitter, _detach, _int, _resolve_token, _user_sids


class FakeServer:
    def __init__(self):
        self.sent = []

    async def emit(self, event, payload, room=None, namespace=None):
        self.sent.append((event, room, namespace))


def test_token_from_auth_or_query():
    assert _resolve_token({"token": "abc"}, {"QUERY_STRING": "token=zzz"}) == "abc"
    assert _resolve_token(None, {"QUERY_STRING": "token=zzz&x=1"}) == "zzz"
    assert _resolve_token({}, {}) is None


def test_int_payload_fields():
    assert _int({"amount": "1500"}, "amount") == 1500
    assert _int({"amount": "lots"}, "amount") is None
    assert _int(None, "amount", 0) == 0


def test_detach_reports_last_connection():
    ident = Identity(5, "amy")
    _user_sids[BACCARAT_NS][5] = {"a", "b"}
    assert _detach("a", ident, BACCARAT_NS) is False
    assert _detach("b", ident, BACCARAT_NS) is True
    assert 5 not in _user_sids[BACCARAT_NS]


def test_emitter_targets_rooms():
    server = FakeServer()
    emitter = SocketEmitter(BACCARAT_NS, server=server)

    async def send():
        await emitter.broadcast("betting_started", {})
        await emitter.to_user(3, "bet_won", {})
        await emitter.to_admins("result_fixed", {})

    asyncio.run(send())
    assert server.sent == [
        ("betting_started", None, BACCARAT_NS),
        ("bet_won", "user:3", BACCARAT_NS),
        ("result_fixed", "admins", BACCARAT_NS),
    ]
