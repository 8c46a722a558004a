#!/usr/bin/env python3
"""Configuration management for the interchain relay.

This module provides type-safe configuration dataclasses with validation.
Configuration is loaded from environment variables with sensible defaults
where appropriate; the command line can override which chains are watched
and the keystore passphrase.
"""

import logging
import os
from dataclasses import dataclass
from urllib.parse import urlparse

from web3 import Web3

from .utils.key_utility import KeyUtility

# Get logger for this module
logger = logging.getLogger(__name__)

TRUE_VALUES = {"1", "true", "yes", "on"}
FALSE_VALUES = {"0", "false", "no", "off"}
SCAN_MODES = ("logs", "blocks")


def _env_flag(name: str, default: bool) -> bool:
    """Read a boolean environment variable."""
    raw = os.environ.get(name, "").strip().lower()
    if not raw:
        return default
    if raw in TRUE_VALUES:
        return True
    if raw in FALSE_VALUES:
        return False
    raise ValueError(f"{name} must be a boolean (true/false), got {raw!r}")


def _env_int(name: str, default: int | None) -> int | None:
    """Read an integer environment variable, empty means default."""
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


@dataclass(frozen=True, slots=True)
class ChainConfig:
    """Configuration for one of the two bridged chains.

    Attributes:
        name: "main" or "side", used in messages and environment variable names
        rpc_url: HTTP(S) RPC endpoint of the chain
        wallet_address: Checksummed address of the bridge wallet contract
    """

    name: str
    rpc_url: str
    wallet_address: str

    @property
    def env_prefix(self) -> str:
        return f"{self.name.upper()}_CHAIN"

    def __post_init__(self) -> None:
        """Validate chain configuration."""
        # Validate RPC URL
        if not self.rpc_url:
            raise ValueError(
                f"{self.name.capitalize()} chain RPC URL is required ({self.env_prefix}_RPC_URL)"
            )

        parsed = urlparse(self.rpc_url)
        if parsed.scheme not in ('http', 'https'):
            raise ValueError(
                f"Invalid RPC URL scheme: {parsed.scheme}. "
                "Expected http or https"
            )

        # Validate and checksum wallet address
        if not self.wallet_address:
            raise ValueError(
                f"{self.name.capitalize()} chain wallet address is required ({self.env_prefix}_WALLET)"
            )

        if not Web3.is_address(self.wallet_address):
            raise ValueError(
                f"Invalid {self.name} chain wallet address: {self.wallet_address}"
            )

        # Convert to checksum address
        checksummed = Web3.to_checksum_address(self.wallet_address)
        if checksummed != self.wallet_address:
            # Use object.__setattr__ since dataclass is frozen
            object.__setattr__(self, 'wallet_address', checksummed)


@dataclass(frozen=True, slots=True)
class SealerConfig:
    """Key material of this sealer.

    Either a V3 keystore file (with its passphrase) or a raw private key
    must be provided.

    Attributes:
        keyfile_path: Path to the encrypted JSON key file
        keyfile_password: Passphrase of the key file
        private_key: Raw hex private key, for local testing
    """

    keyfile_path: str | None = None
    keyfile_password: str = ""
    private_key: str | None = None

    def __post_init__(self) -> None:
        """Validate sealer configuration."""
        if not self.keyfile_path and not self.private_key:
            raise ValueError(
                "A sealer key is required: set KEYFILE_PATH (and KEYFILE_PASSWORD) "
                "or PRIVATE_KEY"
            )

        if self.private_key:
            # Basic private key validation (should be 64 hex chars, optionally with 0x prefix)
            key = self.private_key.removeprefix('0x')

            if len(key) != 64:
                raise ValueError(
                    f"Invalid private key length. Expected 64 hex characters, got {len(key)}"
                )

            try:
                int(key, 16)
            except ValueError:
                raise ValueError(
                    "Invalid private key format. Must be hexadecimal"
                ) from None

    def load_private_key(self) -> str:
        """Return the private key, decrypting the key file if needed.

        Raises:
            FileNotFoundError: If the key file doesn't exist
            ValueError: If the key file cannot be decrypted
        """
        if self.private_key:
            return self.private_key
        return KeyUtility(self.keyfile_path).fetch_key(self.keyfile_password)


@dataclass(frozen=True, slots=True)
class MonitoringConfig:
    """Configuration for scanning, submission and shutdown."""
    polling_interval: int = 12  # seconds between polls
    from_block: int = 0  # first block to scan
    to_block: int | None = None  # last block to scan, None follows the head
    deadline: int = 120  # seconds before cooperative shutdown, 0 runs forever
    gas_limit: int = 300000  # gas for every submission
    request_timeout: int = 30  # HTTP request timeout in seconds
    receipt_timeout: int = 30  # seconds to wait for a transaction receipt
    queue_size: int = 100  # max discovered events waiting for submission
    scan_mode: str = "logs"  # "logs" queries eth_getLogs, "blocks" walks blocks and receipts

    def __post_init__(self) -> None:
        """Validate monitoring configuration."""
        # Validate polling interval
        if self.polling_interval <= 0:
            raise ValueError(f"Polling interval must be positive, got {self.polling_interval}")
        if self.polling_interval > 300:
            raise ValueError(f"Polling interval too long (max 300s), got {self.polling_interval}")

        # Validate block range
        if self.from_block < 0:
            raise ValueError(f"From block must be non-negative, got {self.from_block}")
        if self.to_block is not None and self.to_block < self.from_block:
            raise ValueError(
                f"To block ({self.to_block}) must not be before from block ({self.from_block})"
            )

        if self.deadline < 0:
            raise ValueError(f"Deadline must be non-negative, got {self.deadline}")

        if self.gas_limit <= 0:
            raise ValueError(f"Gas limit must be positive, got {self.gas_limit}")

        # Validate timeouts
        if self.request_timeout <= 0:
            raise ValueError(f"Request timeout must be positive, got {self.request_timeout}")
        if self.request_timeout > 120:
            raise ValueError(f"Request timeout too long (max 120s), got {self.request_timeout}")
        if self.receipt_timeout <= 0:
            raise ValueError(f"Receipt timeout must be positive, got {self.receipt_timeout}")

        if self.queue_size <= 0:
            raise ValueError(f"Queue size must be positive, got {self.queue_size}")

        if self.scan_mode not in SCAN_MODES:
            raise ValueError(
                f"Scan mode must be one of {', '.join(SCAN_MODES)}, got {self.scan_mode!r}"
            )


@dataclass(frozen=True, slots=True)
class RelayConfig:
    """Main configuration for the interchain relay.

    Attributes:
        main_chain: Main chain endpoint and wallet
        side_chain: Side chain endpoint and wallet
        sealer: Key material of this sealer
        monitoring: Scanning, submission and shutdown settings
        watch_main_chain: Mirror main chain deposits to the side chain (mc2sc)
        watch_side_chain: Attest side chain deposits and finalize them on the main chain (sc2mc)
    """

    main_chain: ChainConfig
    side_chain: ChainConfig
    sealer: SealerConfig
    monitoring: MonitoringConfig
    watch_main_chain: bool = True
    watch_side_chain: bool = True

    def __post_init__(self) -> None:
        """Validate relay configuration."""
        if not self.watch_main_chain and not self.watch_side_chain:
            raise ValueError("At least one of the main chain or the side chain must be watched")

    @classmethod
    def from_env(
        cls,
        watch_main_chain: bool | None = None,
        watch_side_chain: bool | None = None,
        keyfile_password: str | None = None
    ) -> "RelayConfig":
        """Load configuration from environment variables.

        Args:
            watch_main_chain: Override WATCH_MAIN_CHAIN
            watch_side_chain: Override WATCH_SIDE_CHAIN
            keyfile_password: Override KEYFILE_PASSWORD

        Returns:
            RelayConfig instance with loaded values

        Raises:
            ValueError: If required environment variables are missing or invalid
        """
        main_chain = ChainConfig(
            name="main",
            rpc_url=os.environ.get("MAIN_CHAIN_RPC_URL", ""),
            wallet_address=os.environ.get("MAIN_CHAIN_WALLET", "")
        )

        side_chain = ChainConfig(
            name="side",
            rpc_url=os.environ.get("SIDE_CHAIN_RPC_URL", ""),
            wallet_address=os.environ.get("SIDE_CHAIN_WALLET", "")
        )

        sealer = SealerConfig(
            keyfile_path=os.environ.get("KEYFILE_PATH") or None,
            keyfile_password=(
                keyfile_password if keyfile_password is not None
                else os.environ.get("KEYFILE_PASSWORD", "")
            ),
            private_key=os.environ.get("PRIVATE_KEY") or None
        )

        monitoring = MonitoringConfig(
            polling_interval=_env_int("POLLING_INTERVAL", 12),
            from_block=_env_int("FROM_BLOCK", 0),
            to_block=_env_int("TO_BLOCK", None),
            deadline=_env_int("DEADLINE", 120),
            gas_limit=_env_int("GAS_LIMIT", 300000),
            request_timeout=_env_int("REQUEST_TIMEOUT", 30),
            receipt_timeout=_env_int("RECEIPT_TIMEOUT", 30),
            queue_size=_env_int("QUEUE_SIZE", 100),
            scan_mode=os.environ.get("SCAN_MODE", "logs").strip().lower() or "logs"
        )

        return cls(
            main_chain=main_chain,
            side_chain=side_chain,
            sealer=sealer,
            monitoring=monitoring,
            watch_main_chain=(
                watch_main_chain if watch_main_chain is not None
                else _env_flag("WATCH_MAIN_CHAIN", True)
            ),
            watch_side_chain=(
                watch_side_chain if watch_side_chain is not None
                else _env_flag("WATCH_SIDE_CHAIN", True)
            )
        )

    def log_config(self) -> None:
        """Log the configuration in a readable format for debugging."""
        logger.info("=" * 60)
        logger.info("Interchain Relay Configuration")
        logger.info("=" * 60)

        for chain in (self.main_chain, self.side_chain):
            logger.info(f"{chain.name.capitalize()} Chain:")
            logger.info(f"  RPC URL: {chain.rpc_url}")
            logger.info(f"  Wallet: {chain.wallet_address}")

        logger.info("Sealer:")
        if self.sealer.private_key:
            logger.info("  Private Key: [SET]")
        else:
            logger.info(f"  Key File: {self.sealer.keyfile_path}")

        logger.info("Monitoring Settings:")
        logger.info(f"  Watch: {', '.join(self.directions)}")
        logger.info(f"  Polling Interval: {self.monitoring.polling_interval} seconds")
        logger.info(
            f"  Blocks: {self.monitoring.from_block} to "
            f"{'head' if self.monitoring.to_block is None else self.monitoring.to_block}"
        )
        logger.info(
            f"  Deadline: {self.monitoring.deadline or 'none'}"
            f"{' seconds' if self.monitoring.deadline else ''}"
        )
        logger.info(f"  Scan Mode: {self.monitoring.scan_mode}")
        logger.info(f"  Queue Size: {self.monitoring.queue_size}")
        logger.info(f"  Gas Limit: {self.monitoring.gas_limit}")

        logger.info("=" * 60)

    @property
    def directions(self) -> list[str]:
        """Log tags of the pipelines this configuration runs."""
        return [
            tag for tag, enabled in (("mc2sc", self.watch_main_chain), ("sc2mc", self.watch_side_chain))
            if enabled
        ]
