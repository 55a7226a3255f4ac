"""
Signing capability for launchpad transactions

Key custody stays outside the client: anything that can turn an unsigned
transaction into a signature (or refuse to) satisfies TransactionSigner.
KeypairSigner is the in-process implementation used by scripts and tests.
"""

import json
from pathlib import Path
from typing import Dict, Protocol

import base58
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import Transaction

from launchpad.core.errors import SigningRejectedError
from launchpad.core.logger import get_logger
from launchpad.core.metrics import get_metrics, LatencyTimer


logger = get_logger(__name__)
metrics = get_metrics()


class TransactionSigner(Protocol):
    """External signing capability"""

    def pubkey(self) -> Pubkey:
        ...

    async def sign_transaction(self, transaction: Transaction) -> Signature:
        """
        Return a signature over the transaction message

        Raises:
            SigningRejectedError: If the user or wallet declines
        """
        ...


def attach_signatures(transaction: Transaction, signatures: Dict[Pubkey, Signature]) -> Transaction:
    """
    Place signatures in the order the message lists its signers

    Raises:
        SigningRejectedError: If a required signer has no signature
    """
    message = transaction.message
    required = message.header.num_required_signatures

    ordered = []
    for key in message.account_keys[:required]:
        if key not in signatures:
            raise SigningRejectedError(f"Missing signature for required signer {key}")
        ordered.append(signatures[key])

    return Transaction.populate(message, ordered)


def load_keypair(source: str) -> Keypair:
    """
    Load a keypair from a JSON byte-array file or a base58 secret key string

    Args:
        source: Path to a Solana CLI keypair file, or a base58 encoded secret key

    Raises:
        ValueError: If the key material is invalid
    """
    path = Path(source)
    if path.exists():
        with open(path, 'r') as f:
            key_data = json.load(f)
        return Keypair.from_bytes(bytes(key_data))

    secret = base58.b58decode(source.strip())
    if len(secret) != 64:
        raise ValueError(f"Expected 64-byte secret key, got {len(secret)} bytes")
    return Keypair.from_bytes(secret)


class KeypairSigner:
    """
    Signs with an in-memory keypair

    Refuses transactions whose fee payer is not this keypair.
    """

    def __init__(self, keypair: Keypair):
        self._keypair = keypair

    def pubkey(self) -> Pubkey:
        return self._keypair.pubkey()

    async def sign_transaction(self, transaction: Transaction) -> Signature:
        message = transaction.message
        fee_payer = message.account_keys[0] if message.account_keys else None

        if fee_payer != self._keypair.pubkey():
            metrics.increment_counter("signing_rejected")
            raise SigningRejectedError(
                f"Fee payer {fee_payer} does not match signer {self._keypair.pubkey()}"
            )

        with LatencyTimer(metrics, "tx_sign"):
            signature = self._keypair.sign_message(bytes(message))

        logger.debug("transaction_signed", signer=str(self._keypair.pubkey()))
        return signature
