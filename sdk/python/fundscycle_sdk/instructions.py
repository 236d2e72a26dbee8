"""
Instruction builders for the FundsCycle program

Instruction data is an 8-byte sha256("global:<name>") prefix followed by the
little-endian arguments. Account lists reference derived addresses only.
"""

import hashlib
import struct

from .addresses import AddressDeriver
from .models import AccountMeta, Instruction

SYSTEM_PROGRAM_ID = "11111111111111111111111111111111"

INITIALIZE_ARGS = struct.Struct("<QQqBB")


def instruction_discriminator(name: str) -> bytes:
    return hashlib.sha256(f"global:{name}".encode("ascii")).digest()[:8]


def _signer(address: str) -> AccountMeta:
    return AccountMeta(address, is_signer=True, is_writable=True)


def _writable(address: str) -> AccountMeta:
    return AccountMeta(address, is_signer=False, is_writable=True)


def _readonly(address: str) -> AccountMeta:
    return AccountMeta(address, is_signer=False, is_writable=False)


class InstructionBuilder:
    """
    Builds program instructions from derived addresses.

    Example:
        >>> builder = InstructionBuilder(AddressDeriver(program_id))
        >>> ix = builder.deposit_collateral(wallet, config_address)
    """

    def __init__(self, deriver: AddressDeriver):
        self.deriver = deriver
        self.program_id = deriver.program_id

    def _build(self, name: str, accounts, args: bytes = b"") -> Instruction:
        return Instruction(
            program_id=self.program_id,
            accounts=tuple(accounts),
            data=instruction_discriminator(name) + args,
        )

    def initialize(
        self,
        admin: str,
        collateral_amount: int,
        monthly_payout: int,
        payment_interval_days: int,
        max_beneficiaries: int,
        withdraw_percent: int,
    ) -> Instruction:
        config, _ = self.deriver.config_address(admin)
        vault, _ = self.deriver.vault_address(config)
        args = INITIALIZE_ARGS.pack(
            collateral_amount,
            monthly_payout,
            payment_interval_days,
            max_beneficiaries,
            withdraw_percent,
        )
        return self._build("initialize", [
            _signer(admin),
            _writable(config),
            _writable(vault),
            _readonly(SYSTEM_PROGRAM_ID),
        ], args)

    def add_beneficiary(self, admin: str, config: str, wallet: str) -> Instruction:
        beneficiary, _ = self.deriver.beneficiary_address(config, wallet)
        return self._build("add_beneficiary", [
            _signer(admin),
            _writable(config),
            _writable(beneficiary),
            _readonly(wallet),
            _readonly(SYSTEM_PROGRAM_ID),
        ])

    def _member_accounts(self, wallet: str, config: str):
        vault, _ = self.deriver.vault_address(config)
        beneficiary, _ = self.deriver.beneficiary_address(config, wallet)
        return [
            _signer(wallet),
            _writable(config),
            _writable(vault),
            _writable(beneficiary),
            _readonly(SYSTEM_PROGRAM_ID),
        ]

    def deposit_collateral(self, wallet: str, config: str) -> Instruction:
        return self._build("deposit_collateral", self._member_accounts(wallet, config))

    def deposit_monthly(self, wallet: str, config: str) -> Instruction:
        return self._build("deposit_monthly", self._member_accounts(wallet, config))

    def withdraw(self, wallet: str, config: str) -> Instruction:
        return self._build("withdraw", self._member_accounts(wallet, config))

    def claim_collateral(self, wallet: str, config: str) -> Instruction:
        return self._build("claim_collateral", self._member_accounts(wallet, config))

    def exit(self, admin: str, config: str) -> Instruction:
        vault, _ = self.deriver.vault_address(config)
        return self._build("exit", [
            _signer(admin),
            _writable(config),
            _writable(vault),
            _readonly(SYSTEM_PROGRAM_ID),
        ])

    def punish(self, admin: str, config: str, wallet: str) -> Instruction:
        beneficiary, _ = self.deriver.beneficiary_address(config, wallet)
        return self._build("punish", [
            _signer(admin),
            _writable(config),
            _writable(beneficiary),
        ])
