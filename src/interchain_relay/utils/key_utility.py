import json
import logging
from pathlib import Path
from typing import Any

from eth_account import Account

logger = logging.getLogger(__name__)


class KeyUtility:
    """Loads the sealer key from a password-protected keystore file.

    The key is decrypted once at startup and kept in memory for the
    lifetime of the process.
    """

    def __init__(self, keyfile_path: str) -> None:
        """Initialize key utility.

        Args:
            keyfile_path: Path to a V3 keystore JSON file
        """
        self.keyfile_path: Path = Path(keyfile_path)

    def read_keyfile(self) -> dict[str, Any]:
        """Read the encrypted keystore.

        Raises:
            FileNotFoundError: If the file doesn't exist
            ValueError: If the file is not valid JSON
        """
        with self.keyfile_path.open() as file:
            try:
                return json.load(file)
            except json.JSONDecodeError as e:
                raise ValueError(f"Key json read error: {e}") from e

    def fetch_key(self, password: str) -> str:
        """Decrypt the keystore and return the private key.

        Args:
            password: Keystore passphrase

        Returns:
            The private key as a 0x-prefixed hex string

        Raises:
            ValueError: If the passphrase is wrong or the keystore is malformed
        """
        keyfile = self.read_keyfile()
        # Passphrases typed on stdin carry their newline
        private_key: bytes = Account.decrypt(keyfile, password.rstrip("\n"))
        address = Account.from_key(private_key).address
        logger.info(f"Sealer key loaded for {address}")
        return "0x" + bytes(private_key).hex()
