"""
Data models for FundsCycle SDK
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Literal, Union


@dataclass(frozen=True)
class Config:
    """Cycle configuration, one per administrator"""
    admin: str
    collateral_amount: int
    monthly_payout: int
    payment_interval: int
    max_beneficiaries: int
    withdraw_percent: int
    current_index: int
    claims_completed: int
    vault: str
    bump: int = 0
    vault_bump: int = 0


@dataclass(frozen=True)
class Vault:
    """Pooled funds account. Balance is queried separately."""
    config: str
    bump: int = 0


@dataclass(frozen=True)
class Beneficiary:
    """Participant in a cycle"""
    config: str
    wallet: str
    index: int
    collateral_paid: bool
    monthly_paid: bool
    bump: int = 0


Record = Union[Config, Vault, Beneficiary]


# Decode results


@dataclass(frozen=True)
class DecodeOk:
    record: Record


@dataclass(frozen=True)
class NotThisKind:
    expected: bytes
    found: bytes


@dataclass(frozen=True)
class SizeMismatch:
    expected: int
    actual: int


Decoded = Union[DecodeOk, NotThisKind, SizeMismatch]


# Logical query results


@dataclass(frozen=True)
class AdministratorView:
    """Everything an administrator dashboard needs"""
    config: Config
    vault: Vault
    vault_balance: int
    config_address: str
    vault_address: str


@dataclass(frozen=True)
class BeneficiaryView:
    """A beneficiary's own record plus the cycle it belongs to"""
    beneficiary: Beneficiary
    beneficiary_address: str
    config: Config
    vault: Vault
    vault_balance: int
    config_address: str
    vault_address: str


class RoleKind(str, Enum):
    ADMINISTRATOR = "administrator"
    BENEFICIARY = "beneficiary"
    NONE = "none"


@dataclass(frozen=True)
class Role:
    """Resolved role of an identity"""
    kind: RoleKind
    index: Optional[int] = None

    @property
    def is_administrator(self) -> bool:
        return self.kind is RoleKind.ADMINISTRATOR

    @property
    def is_beneficiary(self) -> bool:
        return self.kind is RoleKind.BENEFICIARY


@dataclass(frozen=True)
class AccountMeta:
    """Account reference inside an instruction"""
    address: str
    is_signer: bool
    is_writable: bool


@dataclass(frozen=True)
class Instruction:
    """Program instruction ready to be placed in a transaction"""
    program_id: str
    accounts: tuple
    data: bytes


@dataclass
class Confirmation:
    """Outcome of an accepted submission"""
    signature: str
    slot: Optional[int] = None
    commitment: Literal['processed', 'confirmed', 'finalized'] = 'confirmed'
    logs: list = field(default_factory=list)
