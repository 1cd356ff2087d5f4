"""
Polymarket CLOB session for mirror trading

Owns the signing identity and one authenticated py-clob-client session:
- Bootstraps API credentials once per process (stored, created or derived)
- Forwards order and key operations to the session
"""

import asyncio
import json
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable, Optional, Union

from eth_account import Account
from py_clob_client.client import ClobClient
from py_clob_client.clob_types import ApiCreds, OpenOrderParams, OrderArgs, OrderScoringParams, OrderType
from py_clob_client.exceptions import PolyApiException
from web3 import Web3

from pm_mirror.config.credential_store import CredentialStore
from pm_mirror.services.order_decoder import OrderSide

logger = logging.getLogger(__name__)

EOA_SIGNATURE_TYPE = 0

# Loggers the transport writes to while issuing keys
BOOTSTRAP_NOISY_LOGGERS = ("", "httpx", "httpcore", "py_clob_client")


class SessionBootstrapError(Exception):
    """The authenticated session could not be constructed."""


@dataclass(frozen=True)
class SessionCredentials:
    wallet_address: str
    api_key: str
    api_secret: str
    passphrase: str

    @classmethod
    def parse(cls, wallet_address: str, raw: Optional[str]) -> Optional["SessionCredentials"]:
        """Read stored {"apiKey", "apiSecret", "passphrase"}; None if unusable."""
        if not raw:
            return None
        try:
            data = json.loads(raw)
        except ValueError:
            logger.warning("Failed to parse stored API credentials, will create new ones")
            return None
        if not isinstance(data, dict) or not data.get("apiKey") or not data.get("apiSecret"):
            return None
        return cls(
            wallet_address=wallet_address,
            api_key=data["apiKey"],
            api_secret=data["apiSecret"],
            passphrase=data.get("passphrase") or ""
        )

    @classmethod
    def from_api_creds(cls, wallet_address: str, creds: ApiCreds) -> "SessionCredentials":
        return cls(
            wallet_address=wallet_address,
            api_key=creds.api_key,
            api_secret=creds.api_secret,
            passphrase=creds.api_passphrase or ""
        )

    def to_api_creds(self) -> ApiCreds:
        return ApiCreds(api_key=self.api_key, api_secret=self.api_secret, api_passphrase=self.passphrase)


class _ThreadMute(logging.Filter):
    """Drops records emitted from one thread."""

    def __init__(self, thread_id: int):
        super().__init__()
        self.thread_id = thread_id

    def filter(self, record: logging.LogRecord) -> bool:
        return record.thread != self.thread_id


@contextmanager
def muted_diagnostics(enabled: bool = True, logger_names: tuple = BOOTSTRAP_NOISY_LOGGERS):
    """Silence the listed loggers for the calling thread only."""
    if not enabled:
        yield
        return
    mute = _ThreadMute(threading.get_ident())
    targets = [logging.getLogger(name) for name in logger_names]
    for target in targets:
        target.addFilter(mute)
    try:
        yield
    finally:
        for target in targets:
            target.removeFilter(mute)


@dataclass
class SessionConfig:
    private_key: str
    wallet_address: str
    rpc_url: str
    host: str = "https://clob.polymarket.com"


class ClobSessionClient:
    """Lazily authenticated CLOB session shared by all trade executions."""

    def __init__(
        self,
        config: SessionConfig,
        store: CredentialStore,
        client_factory: Callable[..., ClobClient] = ClobClient,
        chain_id_resolver: Optional[Callable[[str], int]] = None
    ):
        self.config = config
        self.store = store
        self._client_factory = client_factory
        self._resolve_chain_id = chain_id_resolver or _chain_id_from_rpc
        self._client: Optional[ClobClient] = None
        self._credentials: Optional[SessionCredentials] = None
        self._bootstrap_task: Optional[asyncio.Task] = None
        self._lock = asyncio.Lock()

    @property
    def credentials(self) -> Optional[SessionCredentials]:
        return self._credentials

    async def get_session(self) -> ClobClient:
        """
        Return the authenticated client, bootstrapping it on first use.

        Bootstrap runs as one shared task. A caller that is cancelled while
        waiting does not abandon it; later callers receive its result.
        """
        if self._client is not None:
            return self._client
        async with self._lock:
            if self._bootstrap_task is None:
                self._bootstrap_task = asyncio.create_task(self._start_session())
            task = self._bootstrap_task
        return await asyncio.shield(task)

    async def _start_session(self) -> ClobClient:
        try:
            client = await asyncio.to_thread(self._bootstrap)
        except Exception as e:
            # Allow a later call to try again
            self._bootstrap_task = None
            if isinstance(e, SessionBootstrapError):
                raise
            raise SessionBootstrapError(f"CLOB session bootstrap failed: {e}") from e
        self._client = client
        return client

    def _bootstrap(self) -> ClobClient:
        signer = Account.from_key(self.config.private_key)
        chain_id = self._resolve_chain_id(self.config.rpc_url)
        wallet = Web3.to_checksum_address(self.config.wallet_address)
        if signer.address != wallet:
            logger.warning(f"Signer {signer.address} differs from wallet {wallet}")

        creds = SessionCredentials.parse(wallet, self.store.get(wallet))
        if creds is None:
            creds = self._issue_credentials(chain_id, wallet, quiet=True)
        else:
            logger.info(f"Using stored API credentials for {wallet}")

        client = self._client_factory(
            self.config.host,
            chain_id=chain_id,
            key=self.config.private_key,
            creds=creds.to_api_creds(),
            signature_type=EOA_SIGNATURE_TYPE,
            funder=wallet
        )
        self._credentials = creds
        logger.info(f"✓ CLOB session ready for {wallet} on chain {chain_id}")
        return client

    def _issue_credentials(self, chain_id: int, wallet: str, quiet: bool = True) -> SessionCredentials:
        """Create fresh API credentials, falling back to deriving the existing ones."""
        bootstrap = self._client_factory(
            self.config.host,
            chain_id=chain_id,
            key=self.config.private_key,
            signature_type=EOA_SIGNATURE_TYPE,
            funder=wallet
        )

        try:
            with muted_diagnostics(quiet):
                api_creds = bootstrap.create_api_key()
        except PolyApiException as e:
            logger.info(f"API key creation rejected ({e.status_code}), deriving existing key")
            api_creds = None

        if api_creds is None or not api_creds.api_key:
            with muted_diagnostics(quiet):
                api_creds = bootstrap.derive_api_key()

        if api_creds is None or not api_creds.api_key:
            raise SessionBootstrapError(f"Exchange returned no usable API key for {wallet}")

        logger.info(f"Issued API credentials for {wallet}")
        return SessionCredentials.from_api_creds(wallet, api_creds)

    async def _run(self, fn: Callable, *args) -> Any:
        return await asyncio.to_thread(fn, *args)

    async def create_api_key(self) -> ApiCreds:
        client = await self.get_session()
        return await self._run(client.create_api_key)

    async def get_api_keys(self) -> Any:
        client = await self.get_session()
        return await self._run(client.get_api_keys)

    async def delete_api_key(self) -> Any:
        client = await self.get_session()
        return await self._run(client.delete_api_key)

    async def place_order(
        self,
        token_id: str,
        price: Union[Decimal, float],
        side: Union[OrderSide, str],
        size: Union[Decimal, float],
        fee_rate_bps: int = 0,
        nonce: int = 0
    ) -> Any:
        """Sign and post a Good-Till-Cancel order."""
        client = await self.get_session()
        order_args = OrderArgs(
            token_id=token_id,
            price=float(price),
            size=float(size),
            side=side.name if isinstance(side, OrderSide) else side.upper(),
            fee_rate_bps=fee_rate_bps,
            nonce=nonce
        )

        def submit():
            signed = client.create_order(order_args)
            return client.post_order(signed, OrderType.GTC)

        return await self._run(submit)

    async def get_order(self, order_id: str) -> Any:
        client = await self.get_session()
        return await self._run(client.get_order, order_id)

    async def is_order_scoring(self, order_id: str) -> Any:
        client = await self.get_session()
        return await self._run(client.is_order_scoring, OrderScoringParams(orderId=order_id))

    async def get_active_orders(self, market: str) -> Any:
        client = await self.get_session()
        return await self._run(client.get_orders, OpenOrderParams(market=market))

    async def cancel_order(self, order_id: str) -> Any:
        client = await self.get_session()
        return await self._run(client.cancel, order_id)

    async def cancel_all_orders(self) -> Any:
        client = await self.get_session()
        return await self._run(client.cancel_all)


def _chain_id_from_rpc(rpc_url: str) -> int:
    return Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": 30})).eth.chain_id
