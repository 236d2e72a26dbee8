"""
State transitions: validate locally, submit, then invalidate

Local checks are advisory fast-fail only; the on-chain program remains the
authority and may still reject a request that passed them. After any
accepted submission every logical query is invalidated, because the client
cannot observe which remote fields actually changed.
"""

import asyncio
import logging
from typing import Optional, Set, Tuple

from .addresses import address_bytes
from .client import FundsCycleClient
from .crypto import FundsCycleCrypto, Signer
from .errors import (
    ErrorContext,
    GatewayError,
    InvalidAddress,
    NotFound,
    PreconditionFailed,
    SubmissionError,
)
from .instructions import InstructionBuilder
from .models import AdministratorView, Beneficiary, Config, Confirmation, Instruction
from .queries import QueryOrchestrator

logger = logging.getLogger("fundscycle.mutations")

MIN_BENEFICIARIES = 3
MAX_BENEFICIARIES = 50
MIN_WITHDRAW_PERCENT = 1
MAX_WITHDRAW_PERCENT = 50
MIN_INTERVAL_DAYS = 1
MAX_INTERVAL_DAYS = 365


class MutationExecutor:
    """
    One method per program instruction.

    Example:
        >>> executor = MutationExecutor(client, orchestrator)
        >>> confirmation = await executor.deposit_collateral(wallet_signer)
        >>> print(confirmation.signature)
    """

    def __init__(
        self,
        client: FundsCycleClient,
        orchestrator: QueryOrchestrator,
        builder: Optional[InstructionBuilder] = None,
    ):
        self.client = client
        self.orchestrator = orchestrator
        self.builder = builder or InstructionBuilder(orchestrator.deriver)
        self._pending: Set[Tuple[str, str]] = set()

    # Administrator operations

    async def initialize(
        self,
        signer: Signer,
        collateral_amount: int,
        monthly_payout: int,
        payment_interval_days: int,
        max_beneficiaries: int,
        withdraw_percent: int,
    ) -> Confirmation:
        """
        Create a new cycle administered by the signer.

        Args:
            signer: Administrator wallet
            collateral_amount: Collateral per beneficiary, in lamports
            monthly_payout: Monthly contribution, in lamports
            payment_interval_days: Days between payouts (1-365)
            max_beneficiaries: Participant cap (3-50)
            withdraw_percent: Share of collateral withdrawable (1-50)
        """
        async with self._guard("initialize", signer):
            if collateral_amount <= 0:
                raise PreconditionFailed("Collateral amount must be greater than 0 lamports")
            if monthly_payout <= 0:
                raise PreconditionFailed("Monthly payout must be greater than 0 lamports")
            if monthly_payout > collateral_amount:
                raise PreconditionFailed("Monthly payout cannot exceed collateral amount")
            if not MIN_BENEFICIARIES <= max_beneficiaries <= MAX_BENEFICIARIES:
                raise PreconditionFailed(
                    f"Max members must be between {MIN_BENEFICIARIES} and {MAX_BENEFICIARIES}"
                )
            if not MIN_INTERVAL_DAYS <= payment_interval_days <= MAX_INTERVAL_DAYS:
                raise PreconditionFailed(
                    f"Payment interval must be between {MIN_INTERVAL_DAYS} and {MAX_INTERVAL_DAYS} days"
                )
            if not MIN_WITHDRAW_PERCENT <= withdraw_percent <= MAX_WITHDRAW_PERCENT:
                raise PreconditionFailed(
                    f"Withdraw percent must be between {MIN_WITHDRAW_PERCENT} and {MAX_WITHDRAW_PERCENT}"
                )
            if await self.orchestrator.config_exists(signer.public_key):
                raise PreconditionFailed("FundsCycle already exists for this admin")

            ix = self.builder.initialize(
                signer.public_key,
                collateral_amount,
                monthly_payout,
                payment_interval_days,
                max_beneficiaries,
                withdraw_percent,
            )
            return await self._submit("initialize", signer, ix)

    async def add_beneficiary(self, signer: Signer, wallet: str) -> Confirmation:
        """Add wallet to the signer's cycle at the next rotation index."""
        async with self._guard("add_beneficiary", signer):
            _check_wallet(wallet)
            view = await self._administrator_view(signer, "add beneficiaries")
            beneficiaries = await self.orchestrator.beneficiary_list(view.config_address)
            if len(beneficiaries) >= view.config.max_beneficiaries:
                raise PreconditionFailed(
                    f"Cycle is full: {len(beneficiaries)} of "
                    f"{view.config.max_beneficiaries} beneficiaries"
                )
            if any(b.wallet == wallet for b in beneficiaries):
                raise PreconditionFailed("Beneficiary already exists for this wallet.")
            beneficiary_address, _ = self.orchestrator.deriver.beneficiary_address(
                view.config_address, wallet
            )
            if await self.orchestrator.account_exists(beneficiary_address):
                raise PreconditionFailed("Beneficiary already exists for this wallet.")

            ix = self.builder.add_beneficiary(signer.public_key, view.config_address, wallet)
            return await self._submit("add_beneficiary", signer, ix)

    async def exit(self, signer: Signer) -> Confirmation:
        """Close the signer's cycle and reclaim the remaining vault funds."""
        async with self._guard("exit", signer):
            view = await self._administrator_view(signer, "exit the program")
            ix = self.builder.exit(signer.public_key, view.config_address)
            return await self._submit("exit", signer, ix)

    async def punish(self, signer: Signer, wallet: str) -> Confirmation:
        """Penalize a beneficiary of the signer's cycle."""
        async with self._guard("punish", signer):
            _check_wallet(wallet)
            view = await self._administrator_view(signer, "punish beneficiaries")
            beneficiaries = await self.orchestrator.beneficiary_list(view.config_address)
            if not any(b.wallet == wallet for b in beneficiaries):
                raise PreconditionFailed("Wallet is not a beneficiary of this cycle")
            ix = self.builder.punish(signer.public_key, view.config_address, wallet)
            return await self._submit("punish", signer, ix)

    # Beneficiary operations

    async def deposit_collateral(self, signer: Signer) -> Confirmation:
        async with self._guard("deposit_collateral", signer):
            config_address, _, beneficiary = await self._membership(signer, "deposit collateral")
            if beneficiary.collateral_paid:
                raise PreconditionFailed("Collateral already paid")
            ix = self.builder.deposit_collateral(signer.public_key, config_address)
            return await self._submit("deposit_collateral", signer, ix)

    async def deposit_monthly(self, signer: Signer) -> Confirmation:
        async with self._guard("deposit_monthly", signer):
            config_address, _, beneficiary = await self._membership(signer, "deposit the monthly payout")
            if beneficiary.monthly_paid:
                raise PreconditionFailed("Monthly already paid")
            ix = self.builder.deposit_monthly(signer.public_key, config_address)
            return await self._submit("deposit_monthly", signer, ix)

    async def withdraw(self, signer: Signer) -> Confirmation:
        """Withdraw this round's payout. Only the beneficiary whose turn it is may withdraw."""
        async with self._guard("withdraw", signer):
            config_address, config, beneficiary = await self._membership(signer, "withdraw")
            if beneficiary.index != config.current_index:
                raise PreconditionFailed("It's not your turn to withdraw yet")
            ix = self.builder.withdraw(signer.public_key, config_address)
            return await self._submit("withdraw", signer, ix)

    async def claim_collateral(self, signer: Signer) -> Confirmation:
        """Reclaim collateral once every participant has been paid out."""
        async with self._guard("claim_collateral", signer):
            config_address, config, _ = await self._membership(signer, "claim collateral")
            if config.claims_completed < config.max_beneficiaries:
                raise PreconditionFailed("Cannot claim collateral until the cycle is complete")
            ix = self.builder.claim_collateral(signer.public_key, config_address)
            return await self._submit("claim_collateral", signer, ix)

    # Helpers

    def _guard(self, operation: str, signer: Signer) -> "_PendingGuard":
        return _PendingGuard(self._pending, (operation, signer.public_key))

    def is_pending(self, operation: str, identity: str) -> bool:
        return (operation, identity) in self._pending

    async def _administrator_view(self, signer: Signer, action: str) -> AdministratorView:
        try:
            return await self.orchestrator.administrator_view(signer.public_key)
        except NotFound:
            raise PreconditionFailed(f"Only a cycle administrator can {action}") from None

    async def _membership(self, signer: Signer, action: str) -> Tuple[str, Config, Beneficiary]:
        """Locate the signer's beneficiary record and its cycle."""
        identity = signer.public_key
        try:
            admin = await self.orchestrator.administrator_view(identity)
        except NotFound:
            admin = None
        if admin is not None:
            members = await self.orchestrator.beneficiary_list(admin.config_address)
            for b in members:
                if b.wallet == identity:
                    return admin.config_address, admin.config, b
        try:
            view = await self.orchestrator.beneficiary_view(identity)
        except NotFound:
            raise PreconditionFailed(f"You must be a beneficiary to {action}") from None
        return view.config_address, view.config, view.beneficiary

    async def _submit(self, operation: str, signer: Signer, ix: Instruction) -> Confirmation:
        # Once sent, a submission runs to completion even if the caller is cancelled
        task = asyncio.ensure_future(self._sign_submit_invalidate(operation, signer, ix))
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            await asyncio.wait({task})
            if not task.cancelled() and task.exception() is not None:
                logger.warning(
                    f"{operation} failed after its caller was cancelled: {task.exception()}",
                    extra={"operation": operation},
                )
            raise

    async def _sign_submit_invalidate(self, operation: str, signer: Signer, ix: Instruction) -> Confirmation:
        try:
            blockhash = await self.client.get_latest_blockhash()
            tx = FundsCycleCrypto.sign_transaction([ix], blockhash, [signer])
            confirmation = await self.client.submit(tx)
        except GatewayError as e:
            logger.warning(f"{operation} could not be submitted: {e.message}", extra={"operation": operation})
            raise SubmissionError(
                f"Failed to submit {operation}",
                reason=e.message,
                context=ErrorContext(debug_info={"operation": operation}),
            ) from e
        except SubmissionError as e:
            if e.outcome_unknown:
                # The transaction may still land
                removed = self.orchestrator.invalidate()
                logger.warning(
                    f"{operation} outcome unknown: {e.reason} ({removed} cached results invalidated)",
                    extra={"operation": operation, "signature": e.signature},
                )
            else:
                logger.warning(
                    f"{operation} rejected: {e.reason}",
                    extra={"operation": operation, "signature": e.signature},
                )
            raise

        removed = self.orchestrator.invalidate()
        logger.info(
            f"{operation} confirmed: {confirmation.signature[:16]}... ({removed} cached results invalidated)",
            extra={"operation": operation, "signature": confirmation.signature},
        )
        return confirmation


class _PendingGuard:
    """Rejects a second concurrent run of the same operation for one identity."""

    def __init__(self, pending: Set[Tuple[str, str]], key: Tuple[str, str]):
        self.pending = pending
        self.key = key

    async def __aenter__(self):
        if self.key in self.pending:
            raise PreconditionFailed(f"A {self.key[0].replace('_', ' ')} request is already pending")
        self.pending.add(self.key)
        return self

    async def __aexit__(self, *exc):
        self.pending.discard(self.key)
        return False


def _check_wallet(wallet: str) -> None:
    try:
        address_bytes(wallet)
    except InvalidAddress:
        raise PreconditionFailed(f"Invalid wallet address: {wallet!r}") from None
