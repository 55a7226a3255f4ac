"""
Transaction Builder for the launchpad client
Assembles unsigned transactions from program instructions
"""

from typing import List, Optional

from solders.compute_budget import set_compute_unit_limit, set_compute_unit_price
from solders.hash import Hash
from solders.instruction import Instruction
from solders.message import Message
from solders.pubkey import Pubkey
from solders.transaction import Transaction

from launchpad.core.errors import InvalidArgumentError
from launchpad.core.logger import get_logger
from launchpad.core.metrics import get_metrics


logger = get_logger(__name__)
metrics = get_metrics()


# Solana packet limit for a serialized transaction
MAX_TRANSACTION_SIZE = 1232


class TransactionBuilder:
    """
    Builds unsigned legacy transactions

    Usage:
        builder = TransactionBuilder(compute_unit_price=50_000)
        tx = builder.build_transaction([swap_ix], payer=owner, recent_blockhash=blockhash)
    """

    def __init__(
        self,
        compute_unit_limit: Optional[int] = None,
        compute_unit_price: Optional[int] = None,
        max_tx_size_bytes: int = MAX_TRANSACTION_SIZE
    ):
        self.compute_unit_limit = compute_unit_limit
        self.compute_unit_price = compute_unit_price
        self.max_tx_size_bytes = max_tx_size_bytes

    def build_transaction(
        self,
        instructions: List[Instruction],
        payer: Pubkey,
        recent_blockhash: Hash
    ) -> Transaction:
        """
        Build an unsigned transaction, prepending compute budget instructions
        when a limit or price is configured

        Args:
            instructions: Program instructions in execution order
            payer: Fee payer (first signer)
            recent_blockhash: Recent blockhash from the RPC

        Returns:
            Unsigned Transaction ready for the signing capability

        Raises:
            InvalidArgumentError: Empty instruction list or oversized transaction
        """
        if not instructions:
            raise InvalidArgumentError("Transaction needs at least one instruction")

        all_instructions: List[Instruction] = []
        if self.compute_unit_limit is not None:
            all_instructions.append(set_compute_unit_limit(self.compute_unit_limit))
        if self.compute_unit_price is not None:
            all_instructions.append(set_compute_unit_price(self.compute_unit_price))
        all_instructions.extend(instructions)

        message = Message.new_with_blockhash(all_instructions, payer, recent_blockhash)
        tx = Transaction.new_unsigned(message)

        tx_size = len(bytes(tx))
        if tx_size > self.max_tx_size_bytes:
            raise InvalidArgumentError(
                f"Transaction size {tx_size} exceeds limit {self.max_tx_size_bytes}"
            )

        metrics.increment_counter("transactions_built")
        logger.debug(
            "transaction_built",
            instruction_count=len(all_instructions),
            tx_size_bytes=tx_size,
            payer=str(payer)
        )

        return tx
