"""
FundsCycle Python SDK

Client for the FundsCycle rotating-savings program on Solana.

Features:
- Offline program-derived address computation
- Typed decoding of Config, Vault and Beneficiary accounts
- Cached, retrying queries with explicit invalidation
- Role resolution for administrators and beneficiaries
- Validated, signed state transitions
"""

__version__ = "1.0.0"
__author__ = "FundsCycle Team"

from .addresses import AddressDeriver, find_program_address, program_id_for
from .cache import QueryCache, QueryKey
from .client import FundsCycleClient
from .config import Settings, get_settings
from .context import FundsCycleContext
from .crypto import FundsCycleCrypto, KeypairSigner, Signer
from .errors import (
    FundsCycleError,
    InvalidSeed,
    InvalidAddress,
    DecodeError,
    DiscriminatorMismatchError,
    SizeMismatchError,
    NotFound,
    GatewayError,
    PreconditionFailed,
    SubmissionError,
    StaleDataError,
)
from .models import (
    Config,
    Vault,
    Beneficiary,
    AdministratorView,
    BeneficiaryView,
    Role,
    RoleKind,
    Confirmation,
)
from .mutations import MutationExecutor
from .queries import QueryOrchestrator
from .roles import RoleResolver, resolve_role
from .utils import Utils

__all__ = [
    "AddressDeriver",
    "find_program_address",
    "program_id_for",
    "QueryCache",
    "QueryKey",
    "FundsCycleClient",
    "Settings",
    "get_settings",
    "FundsCycleContext",
    "FundsCycleCrypto",
    "KeypairSigner",
    "Signer",
    "FundsCycleError",
    "InvalidSeed",
    "InvalidAddress",
    "DecodeError",
    "DiscriminatorMismatchError",
    "SizeMismatchError",
    "NotFound",
    "GatewayError",
    "PreconditionFailed",
    "SubmissionError",
    "StaleDataError",
    "Config",
    "Vault",
    "Beneficiary",
    "AdministratorView",
    "BeneficiaryView",
    "Role",
    "RoleKind",
    "Confirmation",
    "MutationExecutor",
    "QueryOrchestrator",
    "RoleResolver",
    "resolve_role",
    "Utils",
]
