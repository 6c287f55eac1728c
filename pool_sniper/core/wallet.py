import json
import logging

import base58
from solders.keypair import Keypair  # type: ignore
from solders.pubkey import Pubkey  # type: ignore
from solders.transaction import VersionedTransaction  # type: ignore

from ..exceptions import ConfigurationException

logger = logging.getLogger(__name__)


def load_keypair(secret: str | None) -> Keypair:
    """
    Build a keypair from either a base58 secret or a JSON array of secret key bytes.
    """
    if not secret:
        raise ConfigurationException("SOLANA_PRIVATE_KEY not found in environment")

    secret = secret.strip()
    try:
        if secret.startswith("["):
            # JSON array format (solana-keygen output)
            key_bytes = bytes(json.loads(secret))
        else:
            key_bytes = base58.b58decode(secret)
        return Keypair.from_bytes(key_bytes)
    except (ValueError, TypeError) as e:
        raise ConfigurationException(f"SOLANA_PRIVATE_KEY is not a valid keypair: {e}") from e


class Wallet:
    def __init__(self, keypair: Keypair):
        self.keypair = keypair

    @classmethod
    def from_secret(cls, secret: str | None) -> "Wallet":
        wallet = cls(load_keypair(secret))
        logger.info("Wallet loaded: %s", wallet.public_key)
        return wallet

    @property
    def public_key(self) -> Pubkey:
        return self.keypair.pubkey()

    def sign(self, tx: VersionedTransaction) -> VersionedTransaction:
        """Sign an unsigned versioned transaction returned by the router."""
        return VersionedTransaction(tx.message, [self.keypair])
