"""
Transaction Submitter for the launchpad client
Simulates, submits once and tracks confirmation; failures surface as SubmissionError
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from solders.keypair import Keypair
from solders.transaction import Transaction

from launchpad.core.config import TransactionConfig
from launchpad.core.errors import (
    ConfirmationTimeoutError,
    RPCError,
    SubmissionError,
    TransientNetworkError,
)
from launchpad.core.logger import get_logger
from launchpad.core.metrics import get_metrics, LatencyTimer
from launchpad.core.rpc_manager import RPCManager
from launchpad.core.tx_signer import TransactionSigner, attach_signatures


logger = get_logger(__name__)
metrics = get_metrics()


class ConfirmationStatus(Enum):
    """Transaction confirmation status, ordered by finality"""
    PENDING = "pending"
    PROCESSED = "processed"
    CONFIRMED = "confirmed"
    FINALIZED = "finalized"

    @property
    def rank(self) -> int:
        return _RANKS[self]

    @classmethod
    def from_rpc(cls, value: Optional[str]) -> "ConfirmationStatus":
        try:
            return cls(value) if value else cls.PENDING
        except ValueError:
            return cls.PENDING


_RANKS = {
    ConfirmationStatus.PENDING: 0,
    ConfirmationStatus.PROCESSED: 1,
    ConfirmationStatus.CONFIRMED: 2,
    ConfirmationStatus.FINALIZED: 3,
}


@dataclass
class SimulationResult:
    """Result of transaction simulation"""
    success: bool
    error: Any = None
    units_consumed: Optional[int] = None
    logs: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "error": self.error,
            "units_consumed": self.units_consumed,
            "logs": self.logs
        }


@dataclass
class TransactionResult:
    """Result of transaction submission"""
    signature: str
    submitted_at: datetime
    submitted_to_rpc: Optional[str] = None
    simulation: Optional[SimulationResult] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "signature": self.signature,
            "submitted_at": self.submitted_at.isoformat(),
            "submitted_to_rpc": self.submitted_to_rpc,
            "simulation": self.simulation.to_dict() if self.simulation else None
        }


@dataclass
class ConfirmedTransaction:
    """Confirmed transaction details"""
    signature: str
    slot: int
    confirmation_status: ConfirmationStatus
    confirmed_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "signature": self.signature,
            "slot": self.slot,
            "confirmation_status": self.confirmation_status.value,
            "confirmed_at": self.confirmed_at.isoformat()
        }


def _logs_from_rpc_error(error: RPCError) -> List[str]:
    data = error.data if isinstance(error.data, dict) else {}
    return list(data.get("logs") or [])


class TransactionSubmitter:
    """
    Submits signed transactions without retrying them

    Features:
    - Optional preflight simulation that fails fast with program logs
    - Single sendTransaction per call
    - Confirmation polling up to a commitment level

    Usage:
        submitter = TransactionSubmitter(rpc_manager, config.transaction_config)
        result = await submitter.submit(signed_tx)
        confirmed = await submitter.confirm(result.signature)
    """

    def __init__(self, rpc_manager: RPCManager, config: Optional[TransactionConfig] = None):
        """
        Initialize transaction submitter

        Args:
            rpc_manager: RPC manager for network communication
            config: Transaction configuration (optional)
        """
        self.rpc_manager = rpc_manager
        self.config = config or TransactionConfig()

        logger.info(
            "transaction_submitter_initialized",
            skip_preflight=self.config.skip_preflight,
            simulate_before_send=self.config.simulate_before_send,
            commitment=self.config.commitment
        )

    async def simulate(self, tx: Transaction) -> SimulationResult:
        """
        Simulate a transaction

        Raises:
            SubmissionError: If the simulation request itself fails
        """
        try:
            value = await self.rpc_manager.simulate_transaction(bytes(tx))
        except (RPCError, TransientNetworkError) as e:
            raise SubmissionError(f"Simulation request failed: {e}", error=str(e)) from e

        logs = list(value.get("logs") or [])
        if value.get("err"):
            logger.info("simulation_failed", error=str(value["err"]), log_count=len(logs))
            metrics.increment_counter("simulations_failed")
            return SimulationResult(success=False, error=value["err"], logs=logs)

        return SimulationResult(
            success=True,
            units_consumed=value.get("unitsConsumed"),
            logs=logs
        )

    async def submit(self, tx: Transaction) -> TransactionResult:
        """
        Submit a signed transaction once

        Args:
            tx: Fully signed transaction

        Returns:
            TransactionResult with the signature

        Raises:
            SubmissionError: Failed simulation, RPC rejection or network failure,
                with program logs attached when the RPC returned any
        """
        simulation = None
        if self.config.simulate_before_send:
            simulation = await self.simulate(tx)
            if not simulation.success:
                raise SubmissionError(
                    f"Transaction simulation failed: {simulation.error}",
                    logs=simulation.logs,
                    error=simulation.error
                )

        endpoint = self.rpc_manager.endpoints.current.label

        with LatencyTimer(metrics, "tx_submit"):
            try:
                signature = await self.rpc_manager.send_transaction(
                    bytes(tx),
                    skip_preflight=self.config.skip_preflight,
                    preflight_commitment=self.config.commitment
                )
            except RPCError as e:
                metrics.increment_counter("transactions_rejected")
                logs = _logs_from_rpc_error(e)
                logger.error("transaction_rejected", error=str(e), rpc=endpoint, log_count=len(logs))
                raise SubmissionError(str(e), logs=logs, error=e.data) from e
            except TransientNetworkError as e:
                metrics.increment_counter("transactions_rejected")
                logger.error("transaction_send_failed", error=str(e), rpc=endpoint)
                raise SubmissionError(f"Transaction could not be sent: {e}", error=str(e)) from e

        metrics.increment_counter("transactions_submitted")
        logger.info("transaction_submitted", signature=signature, rpc=endpoint)

        return TransactionResult(
            signature=signature,
            submitted_at=datetime.now(timezone.utc),
            submitted_to_rpc=endpoint,
            simulation=simulation
        )

    async def confirm(
        self,
        signature: str,
        commitment: Optional[str] = None,
        timeout_s: Optional[float] = None
    ) -> ConfirmedTransaction:
        """
        Poll signature status until the commitment level is reached

        Raises:
            SubmissionError: If the transaction failed on-chain (logs attached)
            ConfirmationTimeoutError: If the commitment is not reached in time
        """
        target = ConfirmationStatus.from_rpc(commitment or self.config.commitment)
        timeout_s = timeout_s if timeout_s is not None else self.config.confirmation_timeout_s
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout_s

        while True:
            statuses = await self.rpc_manager.get_signature_statuses([signature])
            status = statuses[0] if statuses else None

            if status:
                if status.get("err"):
                    logs = await self._fetch_logs(signature)
                    metrics.increment_counter("transactions_failed_onchain")
                    logger.error("transaction_failed_onchain", signature=signature, error=str(status["err"]))
                    raise SubmissionError(
                        f"Transaction failed: {status['err']}",
                        logs=logs,
                        signature=signature,
                        error=status["err"]
                    )

                reached = ConfirmationStatus.from_rpc(status.get("confirmationStatus"))
                if reached.rank >= target.rank:
                    metrics.increment_counter(
                        "transaction_confirmations",
                        labels={"status": reached.value}
                    )
                    logger.info(
                        "transaction_confirmed",
                        signature=signature,
                        slot=status.get("slot"),
                        status=reached.value
                    )
                    return ConfirmedTransaction(
                        signature=signature,
                        slot=status.get("slot", 0),
                        confirmation_status=reached,
                        confirmed_at=datetime.now(timezone.utc)
                    )

            if loop.time() >= deadline:
                metrics.increment_counter("transaction_confirmations_timeout")
                raise ConfirmationTimeoutError(
                    f"Transaction confirmation timed out after {timeout_s}s",
                    signature=signature
                )

            await asyncio.sleep(self.config.confirmation_poll_interval_s)

    async def _fetch_logs(self, signature: str) -> List[str]:
        try:
            tx = await self.rpc_manager.get_parsed_transaction(signature)
        except (RPCError, TransientNetworkError) as e:
            logger.warning("transaction_logs_unavailable", signature=signature, error=str(e))
            return []
        return list(((tx or {}).get("meta") or {}).get("logMessages") or [])

    async def sign_and_send(
        self,
        tx: Transaction,
        signer: TransactionSigner,
        extra_signers: Sequence[Keypair] = (),
        commitment: Optional[str] = None
    ) -> ConfirmedTransaction:
        """
        Sign with the external capability, submit once, wait for confirmation

        Args:
            tx: Unsigned transaction whose fee payer is the signer
            signer: External signing capability
            extra_signers: Locally held keypairs that must also sign (e.g. a new mint)
            commitment: Commitment level to wait for

        Raises:
            SigningRejectedError: If the signer declines
            SubmissionError: On rejection, simulation or on-chain failure
        """
        signatures = {signer.pubkey(): await signer.sign_transaction(tx)}
        message_bytes = bytes(tx.message)
        for keypair in extra_signers:
            signatures[keypair.pubkey()] = keypair.sign_message(message_bytes)

        signed = attach_signatures(tx, signatures)
        result = await self.submit(signed)
        return await self.confirm(result.signature, commitment)
