from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict

from dotenv import load_dotenv

from liquidation_bot.errors import ConfigError
from liquidation_bot.models import FlashLoanPool

DEFAULT_RELAY_URL = "https://relay.flashbots.net"
DEFAULT_SWAP_API_URL = "https://api.1inch.io/v5.0"

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")
_LIQUIDATOR_VERSIONS = ("v1", "v2")

NETWORK_CHAIN_IDS: Dict[str, int] = {
    "mainnet": 1,
    "goerli": 5,
    "sepolia": 11155111,
    "polygon": 137,
    "arbitrum": 42161,
    "base": 8453,
    "localhost": 1337,
    "hardhat": 31337,
}

_DAI = "0x6B175474E89094C44Da98b954EedeAC495271d0F"
_USDC = "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48"
_POLYGON_DAI = "0x8f3Cf7ad23Cd3CaDbD9735AFf958023239c6A063"


@dataclass(frozen=True)
class DeploymentInfo:
    comet_address: str
    flash_loan_pool: FlashLoanPool


# Known markets: (network, deployment) -> ledger address and flash-loan pool.
DEPLOYMENTS: Dict[tuple[str, str], DeploymentInfo] = {
    ("mainnet", "usdc"): DeploymentInfo(
        comet_address="0xc3d688B66703497DAA19211EEdff47f25384cdc3",
        flash_loan_pool=FlashLoanPool(pair_token=_DAI, pool_fee=100),
    ),
    ("mainnet", "weth"): DeploymentInfo(
        comet_address="0xA17581A9E3356d9A858b789D68B4d866e593aE94",
        flash_loan_pool=FlashLoanPool(pair_token=_USDC, pool_fee=500),
    ),
    ("polygon", "usdc"): DeploymentInfo(
        comet_address="0xF25212E676D1F7F89Cd72fFEe66158f541246445",
        flash_loan_pool=FlashLoanPool(pair_token=_POLYGON_DAI, pool_fee=100),
    ),
}


def _as_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _as_float(value: str | None, default: float) -> float:
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError as exc:
        raise ConfigError(f"expected a number, got {value!r}") from exc


def _as_int(value: str | None, default: int) -> int:
    if value is None or not value.strip():
        return default
    try:
        return int(float(value)) if "e" in value.lower() else int(value)
    except ValueError as exc:
        raise ConfigError(f"expected an integer, got {value!r}") from exc


def _as_optional_str(value: str | None) -> str | None:
    if value is None or not value.strip():
        return None
    return value.strip()


def _required(name: str) -> str:
    value = _as_optional_str(os.getenv(name))
    if value is None:
        raise ConfigError(f"missing required option {name}")
    return value


def _as_address(name: str, value: str) -> str:
    if not _ADDRESS_RE.match(value):
        raise ConfigError(f"{name} is not a 20-byte hex address: {value!r}")
    return value


@dataclass(frozen=True)
class ChainSettings:
    network: str
    rpc_url: str
    comet_address: str
    liquidator_address: str
    deployment: str = "usdc"
    liquidator_version: str = "v1"
    event_start_block: int = 0
    log_chunk_size: int = 0
    rpc_timeout_seconds: float = 30.0

    @property
    def chain_id(self) -> int | None:
        return NETWORK_CHAIN_IDS.get(self.network)


@dataclass(frozen=True)
class SubmissionSettings:
    use_flashbots: bool = False
    private_key: str | None = field(default=None, repr=False)
    relay_url: str = DEFAULT_RELAY_URL
    relay_auth_key: str | None = field(default=None, repr=False)
    submission_timeout_seconds: float = 180.0
    bundle_poll_seconds: float = 2.0
    gas_multiplier: float = 1.1


@dataclass(frozen=True)
class LoopSettings:
    delay_seconds: float = 20.0
    refresh_every_iterations: int = 1000
    min_arbitrage_usd: float = 100.0
    batch_accounts: bool = False


@dataclass(frozen=True)
class GuardSettings:
    pause_on_anomaly: bool = False
    pause_file: str = ".liquidator_pause"
    ack_file: str = ".liquidator_ack"
    pause_env_var: str = "LIQ_PAUSE_SUBMISSIONS"


@dataclass(frozen=True)
class SwapSettings:
    api_url: str = DEFAULT_SWAP_API_URL
    slippage_pct: float = 2.0
    min_base_value: int = 1_000_000
    timeout_seconds: float = 10.0


@dataclass(frozen=True)
class BotSettings:
    chain: ChainSettings
    submission: SubmissionSettings
    flash_loan_pool: FlashLoanPool
    loop: LoopSettings = field(default_factory=LoopSettings)
    guard: GuardSettings = field(default_factory=GuardSettings)
    swap: SwapSettings = field(default_factory=SwapSettings)
    log_level: str = "INFO"
    log_format: str = "text"


def _flash_loan_pool(deployment: DeploymentInfo | None) -> FlashLoanPool:
    pair_token = _as_optional_str(os.getenv("LIQ_FLASH_LOAN_PAIR_TOKEN"))
    if pair_token is None:
        if deployment is None:
            raise ConfigError(
                "no flash-loan pool known for this deployment; set LIQ_FLASH_LOAN_PAIR_TOKEN"
            )
        default = deployment.flash_loan_pool
    else:
        default = FlashLoanPool(
            pair_token=_as_address("LIQ_FLASH_LOAN_PAIR_TOKEN", pair_token),
            pool_fee=deployment.flash_loan_pool.pool_fee if deployment else 0,
        )
    pool_fee = _as_int(os.getenv("LIQ_FLASH_LOAN_POOL_FEE"), default.pool_fee)
    if pool_fee <= 0:
        raise ConfigError("LIQ_FLASH_LOAN_POOL_FEE must be a positive fee tier")
    return FlashLoanPool(
        pair_token=default.pair_token,
        pool_fee=pool_fee,
        reversed_pair=_as_bool(os.getenv("LIQ_FLASH_LOAN_REVERSED_PAIR"), default.reversed_pair),
    )


def load_settings() -> BotSettings:
    load_dotenv(override=False)

    network = _required("LIQ_NETWORK").lower()
    deployment_name = (_as_optional_str(os.getenv("LIQ_DEPLOYMENT")) or "usdc").lower()
    deployment = DEPLOYMENTS.get((network, deployment_name))

    comet_address = _as_optional_str(os.getenv("LIQ_COMET_ADDRESS"))
    if comet_address is None:
        if deployment is None:
            raise ConfigError(
                f"unknown deployment {network}/{deployment_name}; set LIQ_COMET_ADDRESS"
            )
        comet_address = deployment.comet_address

    version = (_as_optional_str(os.getenv("LIQ_LIQUIDATOR_VERSION")) or "v1").lower()
    if version not in _LIQUIDATOR_VERSIONS:
        raise ConfigError(f"LIQ_LIQUIDATOR_VERSION must be one of {_LIQUIDATOR_VERSIONS}, got {version!r}")

    chain = ChainSettings(
        network=network,
        deployment=deployment_name,
        rpc_url=_required("LIQ_RPC_URL"),
        comet_address=_as_address("LIQ_COMET_ADDRESS", comet_address),
        liquidator_address=_as_address("LIQ_LIQUIDATOR_ADDRESS", _required("LIQ_LIQUIDATOR_ADDRESS")),
        liquidator_version=version,
        event_start_block=_as_int(os.getenv("LIQ_EVENT_START_BLOCK"), 0),
        log_chunk_size=_as_int(os.getenv("LIQ_LOG_CHUNK_SIZE"), 0),
        rpc_timeout_seconds=_as_float(os.getenv("LIQ_RPC_TIMEOUT_SECONDS"), 30.0),
    )

    use_flashbots = _as_bool(os.getenv("LIQ_USE_FLASHBOTS"), default=False)
    private_key = _as_optional_str(os.getenv("ETH_PK"))
    if use_flashbots and private_key is None:
        raise ConfigError("ETH_PK is required when LIQ_USE_FLASHBOTS is enabled")

    submission = SubmissionSettings(
        use_flashbots=use_flashbots,
        private_key=private_key,
        relay_url=_as_optional_str(os.getenv("LIQ_FLASHBOTS_RELAY_URL")) or DEFAULT_RELAY_URL,
        relay_auth_key=_as_optional_str(os.getenv("LIQ_FLASHBOTS_AUTH_KEY")),
        submission_timeout_seconds=_as_float(os.getenv("LIQ_SUBMISSION_TIMEOUT_SECONDS"), 180.0),
        bundle_poll_seconds=_as_float(os.getenv("LIQ_BUNDLE_POLL_SECONDS"), 2.0),
        gas_multiplier=_as_float(os.getenv("LIQ_GAS_MULTIPLIER"), 1.1),
    )

    loop = LoopSettings(
        delay_seconds=_as_float(os.getenv("LIQ_LOOP_DELAY_SECONDS"), 20.0),
        refresh_every_iterations=max(1, _as_int(os.getenv("LIQ_REFRESH_EVERY_ITERATIONS"), 1000)),
        min_arbitrage_usd=_as_float(os.getenv("LIQ_MIN_ARBITRAGE_USD"), 100.0),
        batch_accounts=_as_bool(os.getenv("LIQ_BATCH_ACCOUNTS"), default=version == "v2"),
    )

    guard = GuardSettings(
        pause_on_anomaly=_as_bool(os.getenv("LIQ_PAUSE_ON_ANOMALY"), default=False),
        pause_file=str(Path(os.getenv("LIQ_PAUSE_FILE") or ".liquidator_pause").expanduser()),
        ack_file=str(Path(os.getenv("LIQ_ACK_FILE") or ".liquidator_ack").expanduser()),
        pause_env_var=_as_optional_str(os.getenv("LIQ_PAUSE_ENV")) or "LIQ_PAUSE_SUBMISSIONS",
    )

    swap = SwapSettings(
        api_url=(_as_optional_str(os.getenv("LIQ_SWAP_API_URL")) or DEFAULT_SWAP_API_URL).rstrip("/"),
        slippage_pct=_as_float(os.getenv("LIQ_SWAP_SLIPPAGE_PCT"), 2.0),
        min_base_value=_as_int(os.getenv("LIQ_SWAP_MIN_BASE_VALUE"), 1_000_000),
    )

    return BotSettings(
        chain=chain,
        submission=submission,
        flash_loan_pool=_flash_loan_pool(deployment),
        loop=loop,
        guard=guard,
        swap=swap,
        log_level=os.getenv("LIQ_LOG_LEVEL", "INFO"),
        log_format=os.getenv("LIQ_LOG_FORMAT", "text"),
    )
