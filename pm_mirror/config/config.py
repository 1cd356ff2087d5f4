"""
Configuration Module for PM Mirror Bot
"""

import os
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Callable
from dotenv import load_dotenv

load_dotenv()

# Polymarket CTF Exchange on Polygon mainnet
DEFAULT_EXCHANGE_ADDRESS = "0x4bFb41d5B3570DeFd03C39a9A4D8dE6Bd8B8982E"


class ConfigValidationError(Exception):
    """Required configuration is missing or malformed."""

    def __init__(self, errors: list[str]):
        super().__init__("; ".join(errors))
        self.errors = errors


def _env_number(name: str, default: str, cast: Callable):
    raw = os.getenv(name, default).strip()
    try:
        return cast(raw)
    except (ValueError, InvalidOperation):
        raise ConfigValidationError([f"{name} must be a number, got {raw!r}"])


@dataclass(frozen=True)
class CopyParameters:
    """Per-run copy settings handed to the translator and the executor."""
    copy_ratio: Decimal
    retry_limit: int
    order_timeout_seconds: float
    price_increment_percent: Decimal


@dataclass
class BlockchainConfig:
    proxy_wallet: str
    private_key: str
    wss_url: str
    rpc_url: str = "https://polygon-rpc.com"
    exchange_address: str = DEFAULT_EXCHANGE_ADDRESS

    @classmethod
    def from_env(cls) -> "BlockchainConfig":
        return cls(
            proxy_wallet=os.getenv("PROXY_WALLET", ""),
            private_key=os.getenv("PRIVATE_KEY", ""),
            wss_url=os.getenv("WSS_URL", ""),
            rpc_url=os.getenv("RPC_URL", "https://polygon-rpc.com"),
            exchange_address=os.getenv("POLYMARKET_CONTRACT_ADDRESS", DEFAULT_EXCHANGE_ADDRESS)
        )


@dataclass
class ClobConfig:
    http_url: str = "https://clob.polymarket.com"

    @classmethod
    def from_env(cls) -> "ClobConfig":
        return cls(http_url=os.getenv("CLOB_HTTP_URL", "https://clob.polymarket.com"))


@dataclass
class CopyTradingConfig:
    target_wallet: str = ""
    copy_ratio: Decimal = Decimal("1.0")
    retry_limit: int = 3
    order_timeout: float = 5.0
    order_increment: Decimal = Decimal("1")
    reconnect_delay: float = 5.0

    @classmethod
    def from_env(cls) -> "CopyTradingConfig":
        return cls(
            target_wallet=os.getenv("TARGET_WALLET", "").strip(),
            copy_ratio=_env_number("COPY_RATIO", "1.0", Decimal),
            retry_limit=_env_number("RETRY_LIMIT", "3", int),
            order_timeout=_env_number("ORDER_TIMEOUT", "5", float),
            order_increment=_env_number("ORDER_INCREMENT", "1", Decimal),
            reconnect_delay=_env_number("RECONNECT_DELAY", "5", float)
        )

    def copy_parameters(self) -> CopyParameters:
        return CopyParameters(
            copy_ratio=self.copy_ratio,
            retry_limit=self.retry_limit,
            order_timeout_seconds=self.order_timeout,
            price_increment_percent=self.order_increment
        )


@dataclass
class StorageConfig:
    credentials_file: str = "clob_credentials.json"

    @classmethod
    def from_env(cls) -> "StorageConfig":
        return cls(credentials_file=os.getenv("CREDENTIALS_FILE", "clob_credentials.json"))


@dataclass
class LoggingConfig:
    level: str = "INFO"
    log_dir: str = "logs"

    @classmethod
    def from_env(cls) -> "LoggingConfig":
        return cls(
            level=os.getenv("LOG_LEVEL", "INFO").upper(),
            log_dir=os.getenv("LOG_DIR", "logs")
        )


@dataclass
class Config:
    blockchain: BlockchainConfig
    clob: ClobConfig
    copy_trading: CopyTradingConfig
    storage: StorageConfig
    logging: LoggingConfig

    @classmethod
    def load(cls, env_path: str = ".env") -> "Config":
        if os.path.exists(env_path):
            load_dotenv(env_path)

        return cls(
            blockchain=BlockchainConfig.from_env(),
            clob=ClobConfig.from_env(),
            copy_trading=CopyTradingConfig.from_env(),
            storage=StorageConfig.from_env(),
            logging=LoggingConfig.from_env()
        )

    def validate(self) -> tuple[bool, list[str]]:
        errors = []
        if not self.blockchain.proxy_wallet:
            errors.append("PROXY_WALLET is required")
        if not self.blockchain.private_key:
            errors.append("PRIVATE_KEY is required")
        if not self.blockchain.rpc_url:
            errors.append("RPC_URL is required")
        if not self.blockchain.wss_url:
            errors.append("WSS_URL is required")
        if not self.blockchain.exchange_address:
            errors.append("POLYMARKET_CONTRACT_ADDRESS is required")
        if not self.clob.http_url:
            errors.append("CLOB_HTTP_URL is required")
        if self.copy_trading.retry_limit < 1:
            errors.append("RETRY_LIMIT must be at least 1")
        if self.copy_trading.order_timeout < 0:
            errors.append("ORDER_TIMEOUT must not be negative")
        if self.copy_trading.copy_ratio <= 0:
            errors.append("COPY_RATIO must be positive")
        return len(errors) == 0, errors

    def ensure_valid(self) -> "Config":
        valid, errors = self.validate()
        if not valid:
            raise ConfigValidationError(errors)
        return self


if __name__ == "__main__":
    print("Configuration Test")
    print("=" * 50)
    config = Config.load()
    print(f"Wallet: {config.blockchain.proxy_wallet}")
    print(f"Target: {config.copy_trading.target_wallet or '(prompt at startup)'}")
    print(f"Copy Ratio: {config.copy_trading.copy_ratio}")
    print(f"Retry Limit: {config.copy_trading.retry_limit}")
    valid, errors = config.validate()
    print(f"Validation: {'PASSED' if valid else 'FAILED'}")
    if errors:
        for e in errors:
            print(f"  Error: {e}")
