#!/usr/bin/env python3
"""Tests for the configuration module."""

import logging
import os
from unittest.mock import patch

import pytest

from interchain_relay.config import (
    ChainConfig,
    MonitoringConfig,
    RelayConfig,
    SealerConfig,
)

MAIN_WALLET = "0x75076e4fbba61f65efb41d64e45cff340b1e518a"
SIDE_WALLET = "0xf17f52151ebef6c7334fad080c5704d77216b732"
PRIVATE_KEY = "148435bc1bc5ee5ab6f57745625d6c3e15e99b335f29ba75a8542546fd2e2dc4"

BASE_ENV = {
    "MAIN_CHAIN_RPC_URL": "http://localhost:8545",
    "SIDE_CHAIN_RPC_URL": "http://localhost:8546",
    "MAIN_CHAIN_WALLET": MAIN_WALLET,
    "SIDE_CHAIN_WALLET": SIDE_WALLET,
    "PRIVATE_KEY": PRIVATE_KEY,
}


class TestChainConfig:
    """Tests for ChainConfig."""

    def test_valid_config(self):
        config = ChainConfig(name="main", rpc_url="https://rpc.example.org", wallet_address=MAIN_WALLET)

        assert config.rpc_url == "https://rpc.example.org"
        assert config.env_prefix == "MAIN_CHAIN"

    def test_checksum_address_conversion(self):
        """Lowercase addresses are checksummed."""
        config = ChainConfig(name="side", rpc_url="http://localhost:8546", wallet_address=SIDE_WALLET)

        assert config.wallet_address != SIDE_WALLET
        assert config.wallet_address.lower() == SIDE_WALLET

    def test_missing_rpc_url(self):
        with pytest.raises(ValueError, match="MAIN_CHAIN_RPC_URL"):
            ChainConfig(name="main", rpc_url="", wallet_address=MAIN_WALLET)

    def test_invalid_rpc_scheme(self):
        with pytest.raises(ValueError, match="Invalid RPC URL scheme"):
            ChainConfig(name="main", rpc_url="ws://localhost:8546", wallet_address=MAIN_WALLET)

    def test_missing_wallet(self):
        with pytest.raises(ValueError, match="SIDE_CHAIN_WALLET"):
            ChainConfig(name="side", rpc_url="http://localhost:8546", wallet_address="")

    def test_invalid_wallet(self):
        with pytest.raises(ValueError, match="Invalid side chain wallet address"):
            ChainConfig(name="side", rpc_url="http://localhost:8546", wallet_address="0x1234")


class TestSealerConfig:
    """Tests for SealerConfig."""

    def test_private_key(self):
        config = SealerConfig(private_key="0x" + PRIVATE_KEY)
        assert config.load_private_key() == "0x" + PRIVATE_KEY

    def test_no_key_material(self):
        with pytest.raises(ValueError, match="sealer key is required"):
            SealerConfig()

    def test_private_key_wrong_length(self):
        with pytest.raises(ValueError, match="length"):
            SealerConfig(private_key="0x1234")

    def test_private_key_not_hex(self):
        with pytest.raises(ValueError, match="hexadecimal"):
            SealerConfig(private_key="zz" * 32)

    def test_keyfile_is_decrypted(self):
        """Without a raw key the key file is decrypted with the passphrase."""
        config = SealerConfig(keyfile_path="/keys/sealer.json", keyfile_password="secret")

        with patch("interchain_relay.config.KeyUtility") as key_utility:
            key_utility.return_value.fetch_key.return_value = "0x" + PRIVATE_KEY

            assert config.load_private_key() == "0x" + PRIVATE_KEY

        key_utility.assert_called_once_with("/keys/sealer.json")
        key_utility.return_value.fetch_key.assert_called_once_with("secret")


class TestMonitoringConfig:
    """Tests for MonitoringConfig."""

    def test_defaults(self):
        config = MonitoringConfig()

        assert config.polling_interval == 12
        assert config.from_block == 0
        assert config.to_block is None
        assert config.deadline == 120
        assert config.gas_limit == 300000
        assert config.queue_size == 100
        assert config.scan_mode == "logs"

    @pytest.mark.parametrize("kwargs,message", [
        ({"polling_interval": 0}, "Polling interval must be positive"),
        ({"polling_interval": 301}, "Polling interval too long"),
        ({"from_block": -1}, "From block must be non-negative"),
        ({"from_block": 10, "to_block": 5}, "must not be before"),
        ({"deadline": -1}, "Deadline must be non-negative"),
        ({"gas_limit": 0}, "Gas limit must be positive"),
        ({"request_timeout": 0}, "Request timeout must be positive"),
        ({"request_timeout": 121}, "Request timeout too long"),
        ({"receipt_timeout": 0}, "Receipt timeout must be positive"),
        ({"queue_size": 0}, "Queue size must be positive"),
        ({"scan_mode": "receipts"}, "Scan mode must be one of logs, blocks"),
    ])
    def test_invalid_values(self, kwargs, message):
        with pytest.raises(ValueError, match=message):
            MonitoringConfig(**kwargs)

    def test_zero_deadline_allowed(self):
        """A zero deadline means run until interrupted."""
        assert MonitoringConfig(deadline=0).deadline == 0


class TestRelayConfig:
    """Tests for RelayConfig."""

    @patch.dict(os.environ, BASE_ENV, clear=True)
    def test_from_env_defaults(self):
        config = RelayConfig.from_env()

        assert config.main_chain.rpc_url == "http://localhost:8545"
        assert config.side_chain.wallet_address.lower() == SIDE_WALLET
        assert config.sealer.private_key == PRIVATE_KEY
        assert config.monitoring.deadline == 120
        assert config.watch_main_chain is True
        assert config.watch_side_chain is True
        assert config.directions == ["mc2sc", "sc2mc"]

    @patch.dict(os.environ, {
        **BASE_ENV,
        "FROM_BLOCK": "100",
        "TO_BLOCK": "200",
        "DEADLINE": "0",
        "POLLING_INTERVAL": "5",
        "GAS_LIMIT": "500000",
        "REQUEST_TIMEOUT": "10",
        "RECEIPT_TIMEOUT": "90",
        "QUEUE_SIZE": "5",
        "SCAN_MODE": "Blocks",
        "WATCH_MAIN_CHAIN": "false",
    }, clear=True)
    def test_from_env_custom_values(self):
        config = RelayConfig.from_env()

        assert config.monitoring.from_block == 100
        assert config.monitoring.to_block == 200
        assert config.monitoring.deadline == 0
        assert config.monitoring.polling_interval == 5
        assert config.monitoring.gas_limit == 500000
        assert config.monitoring.request_timeout == 10
        assert config.monitoring.receipt_timeout == 90
        assert config.monitoring.queue_size == 5
        assert config.monitoring.scan_mode == "blocks"
        assert config.directions == ["sc2mc"]

    @patch.dict(os.environ, {**BASE_ENV, "WATCH_MAIN_CHAIN": "false"}, clear=True)
    def test_overrides_win_over_environment(self):
        """Command line flags override the watch variables."""
        config = RelayConfig.from_env(watch_main_chain=True, watch_side_chain=False)

        assert config.directions == ["mc2sc"]

    @patch.dict(os.environ, {
        **{k: v for k, v in BASE_ENV.items() if k != "PRIVATE_KEY"},
        "KEYFILE_PATH": "/keys/sealer.json",
        "KEYFILE_PASSWORD": "from-env",
    }, clear=True)
    def test_keyfile_password_override(self):
        config = RelayConfig.from_env(keyfile_password="typed")

        assert config.sealer.keyfile_path == "/keys/sealer.json"
        assert config.sealer.keyfile_password == "typed"
        assert config.sealer.private_key is None

    @patch.dict(os.environ, {**BASE_ENV, "WATCH_MAIN_CHAIN": "0", "WATCH_SIDE_CHAIN": "no"}, clear=True)
    def test_nothing_watched(self):
        with pytest.raises(ValueError, match="At least one"):
            RelayConfig.from_env()

    @patch.dict(os.environ, {**BASE_ENV, "WATCH_SIDE_CHAIN": "maybe"}, clear=True)
    def test_invalid_flag(self):
        with pytest.raises(ValueError, match="WATCH_SIDE_CHAIN must be a boolean"):
            RelayConfig.from_env()

    @patch.dict(os.environ, {**BASE_ENV, "TO_BLOCK": "latest"}, clear=True)
    def test_invalid_integer(self):
        with pytest.raises(ValueError, match="TO_BLOCK must be an integer"):
            RelayConfig.from_env()

    @patch.dict(os.environ, {k: v for k, v in BASE_ENV.items() if k != "SIDE_CHAIN_RPC_URL"}, clear=True)
    def test_missing_variable(self):
        with pytest.raises(ValueError, match="SIDE_CHAIN_RPC_URL"):
            RelayConfig.from_env()

    @patch.dict(os.environ, BASE_ENV, clear=True)
    def test_log_config_hides_key(self, caplog):
        """The private key is never logged."""
        config = RelayConfig.from_env()

        with caplog.at_level(logging.INFO, logger="interchain_relay.config"):
            config.log_config()

        assert "Private Key: [SET]" in caplog.text
        assert PRIVATE_KEY not in caplog.text
        assert "Deadline: 120 seconds" in caplog.text
