import json
import logging
from pathlib import Path
from typing import Any

from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import Web3
from web3.contract import Contract
from web3.middleware import SignAndSendRawMiddlewareBuilder

from ..exceptions import LedgerConnectionError

logger = logging.getLogger(__name__)

CONTRACTS_DIR = Path(__file__).parent.parent / "contracts"


class ContractUtility:
    """
    Utility for ledger connection, contract interaction and ABI loading.

    Can be used in two modes:
    1. Full mode: Initialize with RPC URL and private key for signing transactions
    2. Read-only mode: Initialize with RPC URL only for calls and log queries
    """

    def __init__(self, rpc_url: str, secret: str = "", request_timeout: int = 30) -> None:
        """
        Initialize the ContractUtility.

        Args:
            rpc_url: RPC URL of the ledger (required)
            secret: Private key for signing transactions (optional - if not provided, read-only mode)
            request_timeout: HTTP request timeout in seconds
        """
        if not rpc_url:
            raise ValueError("RPC URL is required")

        self.rpc_url = rpc_url
        self.account: LocalAccount | None = None

        self.w3 = Web3(Web3.HTTPProvider(self.rpc_url, request_kwargs={'timeout': request_timeout}))

        # Add signing middleware only if secret is provided
        if secret:
            self._add_signing_middleware(secret)

    def _add_signing_middleware(self, secret: str) -> None:
        """
        Add signing middleware to the existing Web3 instance.

        Args:
            secret: Private key for signing transactions
        """
        if not secret:
            raise ValueError("Private key is required for signing transactions")

        account: LocalAccount = Account.from_key(secret)
        self.w3.middleware_onion.add(SignAndSendRawMiddlewareBuilder.build(account))
        self.w3.eth.default_account = account.address
        self.account = account

    @property
    def address(self) -> str | None:
        """Address transactions are sent from, None in read-only mode."""
        return self.account.address if self.account else None

    def ensure_connected(self) -> int:
        """Verify the endpoint answers and return its chain id.

        Raises:
            LedgerConnectionError: If the endpoint cannot be reached
        """
        try:
            if not self.w3.is_connected():
                raise LedgerConnectionError(f"Failed to connect to {self.rpc_url}")
            return self.w3.eth.chain_id
        except LedgerConnectionError:
            raise
        except Exception as e:
            raise LedgerConnectionError(f"Failed to connect to {self.rpc_url}: {e}") from e

    def get_contract(self, contract_name: str, address: str) -> Contract:
        """Bind a contract from the contracts folder to an address."""
        return self.w3.eth.contract(
            address=Web3.to_checksum_address(address),
            abi=self.get_contract_abi(contract_name),
        )

    def get_contract_abi(self, contract_name: str) -> list[dict[str, Any]]:
        """Fetches ABI of the given contract from the contracts folder.

        Args:
            contract_name: Name of the contract (without .json extension)

        Returns:
            List of ABI dictionaries for the contract

        Raises:
            FileNotFoundError: If the contract file doesn't exist
            json.JSONDecodeError: If the contract file is invalid JSON
        """
        contract_path: Path = (CONTRACTS_DIR / f"{contract_name}.json").resolve()

        with contract_path.open() as file:
            contract_data: dict[str, Any] = json.load(file)

        return contract_data["abi"]
