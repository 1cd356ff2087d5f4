"""Tests for the CLOB session client."""

import asyncio
import json
import logging
import threading
from decimal import Decimal

import pytest
from eth_account import Account
from py_clob_client.clob_types import ApiCreds, OpenOrderParams, OrderScoringParams, OrderType
from py_clob_client.exceptions import PolyApiException

from pm_mirror.config.credential_store import MemoryCredentialStore
from pm_mirror.services.clob_client import (
    ClobSessionClient,
    SessionBootstrapError,
    SessionConfig,
    SessionCredentials,
    muted_diagnostics,
)
from pm_mirror.services.order_decoder import OrderSide

PRIVATE_KEY = "0x" + "11" * 32
WALLET = Account.from_key(PRIVATE_KEY).address
STORED = json.dumps({"apiKey": "stored-key", "apiSecret": "stored-secret", "passphrase": "stored-pass"})
ISSUED = ApiCreds(api_key="new-key", api_secret="new-secret", api_passphrase="new-pass")
DERIVED = ApiCreds(api_key="derived-key", api_secret="derived-secret", api_passphrase="derived-pass")


class FakeClobClient:
    """Records constructor arguments and scripted key/order calls."""

    instances = []
    create_result = ISSUED
    derive_result = DERIVED

    def __init__(self, host, chain_id=None, key=None, creds=None, signature_type=None, funder=None):
        self.host = host
        self.chain_id = chain_id
        self.key = key
        self.creds = creds
        self.signature_type = signature_type
        self.funder = funder
        self.calls = []
        FakeClobClient.instances.append(self)

    def create_api_key(self):
        self.calls.append("create_api_key")
        result = type(self).create_result
        if isinstance(result, Exception):
            raise result
        return result

    def derive_api_key(self):
        self.calls.append("derive_api_key")
        return type(self).derive_result

    def create_order(self, order_args):
        self.calls.append(("create_order", order_args))
        return {"signed": order_args.token_id}

    def post_order(self, order, order_type):
        self.calls.append(("post_order", order, order_type))
        return {"success": True, "orderID": "order-1"}

    def get_order(self, order_id):
        raise PolyApiException(error_msg={"error": "order not found"})

    def cancel(self, order_id):
        self.calls.append(("cancel", order_id))
        return {"canceled": [order_id]}

    def cancel_all(self):
        self.calls.append("cancel_all")
        return {"canceled": ["a", "b"]}

    def is_order_scoring(self, params):
        self.calls.append(("is_order_scoring", params))
        return {"scoring": True}

    def get_orders(self, params):
        self.calls.append(("get_orders", params))
        return [{"id": "order-1", "market": params.market}]

    def get_api_keys(self):
        self.calls.append("get_api_keys")
        return {"apiKeys": ["stored-key"]}

    def delete_api_key(self):
        self.calls.append("delete_api_key")
        return "OK"


@pytest.fixture
def fake_client():
    """Fresh subclass per test so scripted results do not leak."""
    FakeClobClient.instances = []

    class Client(FakeClobClient):
        pass
    return Client


def make_session(client_cls, records=None, chain_ids=None, resolver=None):
    resolved = chain_ids if chain_ids is not None else []

    def resolve(rpc_url):
        resolved.append(rpc_url)
        return 137

    return ClobSessionClient(
        config=SessionConfig(private_key=PRIVATE_KEY, wallet_address=WALLET.lower(), rpc_url="http://rpc"),
        store=MemoryCredentialStore(records or {}),
        client_factory=client_cls,
        chain_id_resolver=resolver or resolve
    )


class TestSessionCredentials:

    def test_parse_stored_object(self):
        creds = SessionCredentials.parse(WALLET, STORED)

        assert creds.api_key == "stored-key"
        assert creds.api_secret == "stored-secret"
        assert creds.passphrase == "stored-pass"

    def test_missing_passphrase_defaults_to_empty(self):
        creds = SessionCredentials.parse(WALLET, json.dumps({"apiKey": "k", "apiSecret": "s"}))

        assert creds.passphrase == ""

    @pytest.mark.parametrize("raw", [None, "", "{not json", "[]", json.dumps({"apiKey": "k"})])
    def test_unusable_values_parse_to_none(self, raw):
        assert SessionCredentials.parse(WALLET, raw) is None

    def test_round_trip_to_api_creds(self):
        creds = SessionCredentials.from_api_creds(WALLET, ISSUED).to_api_creds()

        assert (creds.api_key, creds.api_secret, creds.api_passphrase) == ("new-key", "new-secret", "new-pass")


class TestBootstrap:

    @pytest.mark.asyncio
    async def test_stored_credentials_are_reused(self, fake_client):
        session = make_session(fake_client, records={WALLET: STORED})

        client = await session.get_session()

        assert len(FakeClobClient.instances) == 1
        assert client.creds.api_key == "stored-key"
        assert client.chain_id == 137
        assert client.signature_type == 0
        assert client.funder == WALLET
        assert client.calls == []

    @pytest.mark.asyncio
    async def test_new_credentials_are_created(self, fake_client):
        session = make_session(fake_client)

        client = await session.get_session()

        bootstrap = FakeClobClient.instances[0]
        assert bootstrap.creds is None
        assert bootstrap.calls == ["create_api_key"]
        assert client.creds.api_key == "new-key"
        assert session.credentials.api_key == "new-key"

    @pytest.mark.asyncio
    async def test_empty_create_falls_back_to_derive(self, fake_client):
        fake_client.create_result = None
        session = make_session(fake_client)

        client = await session.get_session()

        assert FakeClobClient.instances[0].calls == ["create_api_key", "derive_api_key"]
        assert client.creds.api_key == "derived-key"

    @pytest.mark.asyncio
    async def test_rejected_create_falls_back_to_derive(self, fake_client):
        fake_client.create_result = PolyApiException(error_msg="key exists")
        session = make_session(fake_client)

        client = await session.get_session()

        assert client.creds.api_key == "derived-key"

    @pytest.mark.asyncio
    async def test_no_credentials_at_all_fails(self, fake_client):
        fake_client.create_result = None
        fake_client.derive_result = None
        session = make_session(fake_client)

        with pytest.raises(SessionBootstrapError):
            await session.get_session()

    @pytest.mark.asyncio
    async def test_bad_private_key_fails(self, fake_client):
        session = make_session(fake_client)
        session.config.private_key = "not-a-key"

        with pytest.raises(SessionBootstrapError):
            await session.get_session()

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_bootstrap(self, fake_client):
        chain_ids = []
        session = make_session(fake_client, records={WALLET: STORED}, chain_ids=chain_ids)

        clients = await asyncio.gather(*[session.get_session() for _ in range(5)])

        assert len(chain_ids) == 1
        assert all(c is clients[0] for c in clients)

    @pytest.mark.asyncio
    async def test_cancelled_caller_does_not_restart_bootstrap(self, fake_client):
        """The bootstrap keeps running for later callers after the first waiter is cancelled."""
        release = threading.Event()
        chain_ids = []

        def slow_resolve(rpc_url):
            chain_ids.append(rpc_url)
            release.wait(5)
            return 137

        session = make_session(fake_client, resolver=slow_resolve)
        first = asyncio.create_task(session.get_session())
        await asyncio.sleep(0.05)
        first.cancel()
        with pytest.raises(asyncio.CancelledError):
            await first

        release.set()
        client = await session.get_session()

        assert len(chain_ids) == 1
        assert client.creds.api_key == "new-key"
        assert FakeClobClient.instances[0].calls == ["create_api_key"]
        assert len(FakeClobClient.instances) == 2

    @pytest.mark.asyncio
    async def test_failed_bootstrap_can_be_retried(self, fake_client):
        fake_client.create_result = None
        fake_client.derive_result = None
        session = make_session(fake_client)

        with pytest.raises(SessionBootstrapError):
            await session.get_session()

        fake_client.create_result = ISSUED
        client = await session.get_session()

        assert client.creds.api_key == "new-key"


class TestForwarding:

    @pytest.mark.asyncio
    async def test_place_order_signs_and_posts_gtc(self, fake_client):
        session = make_session(fake_client, records={WALLET: STORED})

        response = await session.place_order("123", Decimal("0.51"), OrderSide.BUY, Decimal("5.01"), 0, 99)

        assert response == {"success": True, "orderID": "order-1"}
        client = await session.get_session()
        (_, order_args), (_, signed, order_type) = client.calls
        assert order_args.token_id == "123"
        assert order_args.price == 0.51
        assert order_args.size == 5.01
        assert order_args.side == "BUY"
        assert order_args.nonce == 99
        assert signed == {"signed": "123"}
        assert order_type == OrderType.GTC

    @pytest.mark.asyncio
    async def test_cancel_order_forwards(self, fake_client):
        session = make_session(fake_client, records={WALLET: STORED})

        assert await session.cancel_order("abc") == {"canceled": ["abc"]}

    @pytest.mark.asyncio
    async def test_exchange_errors_propagate(self, fake_client):
        session = make_session(fake_client, records={WALLET: STORED})

        with pytest.raises(PolyApiException):
            await session.get_order("missing")

    @pytest.mark.asyncio
    async def test_is_order_scoring_wraps_order_id(self, fake_client):
        session = make_session(fake_client, records={WALLET: STORED})

        assert await session.is_order_scoring("order-9") == {"scoring": True}

        client = await session.get_session()
        (name, params), = client.calls
        assert name == "is_order_scoring"
        assert isinstance(params, OrderScoringParams)
        assert params.orderId == "order-9"

    @pytest.mark.asyncio
    async def test_get_active_orders_filters_by_market(self, fake_client):
        session = make_session(fake_client, records={WALLET: STORED})

        orders = await session.get_active_orders("0xmarket")

        assert orders == [{"id": "order-1", "market": "0xmarket"}]
        client = await session.get_session()
        (name, params), = client.calls
        assert name == "get_orders"
        assert isinstance(params, OpenOrderParams)
        assert params.market == "0xmarket"

    @pytest.mark.asyncio
    async def test_cancel_all_orders_forwards(self, fake_client):
        session = make_session(fake_client, records={WALLET: STORED})

        assert await session.cancel_all_orders() == {"canceled": ["a", "b"]}
        assert (await session.get_session()).calls == ["cancel_all"]

    @pytest.mark.asyncio
    async def test_key_management_forwards(self, fake_client):
        session = make_session(fake_client, records={WALLET: STORED})

        assert await session.get_api_keys() == {"apiKeys": ["stored-key"]}
        assert await session.delete_api_key() == "OK"
        assert await session.create_api_key() is ISSUED

        client = await session.get_session()
        assert client.calls == ["get_api_keys", "delete_api_key", "create_api_key"]
        assert len(FakeClobClient.instances) == 1


class TestMutedDiagnostics:

    def test_mutes_calling_thread_only(self, caplog):
        noisy = logging.getLogger("httpx")
        seen_from_other_thread = []

        def other_thread():
            noisy.warning("from worker")
            seen_from_other_thread.append(True)

        with caplog.at_level(logging.WARNING, logger="httpx"):
            with muted_diagnostics():
                noisy.warning("hidden")
                worker = threading.Thread(target=other_thread)
                worker.start()
                worker.join()
            noisy.warning("visible")

        messages = [r.getMessage() for r in caplog.records]
        assert "hidden" not in messages
        assert "from worker" in messages
        assert "visible" in messages

    def test_disabled_is_a_no_op(self, caplog):
        with caplog.at_level(logging.WARNING, logger="httpx"):
            with muted_diagnostics(enabled=False):
                logging.getLogger("httpx").warning("shown")

        assert "shown" in [r.getMessage() for r in caplog.records]


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
