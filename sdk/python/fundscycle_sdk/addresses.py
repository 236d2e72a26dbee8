"""
Program-derived address computation

Addresses are computed offline from the program id and seed bytes, so
existence checks and instruction construction never need a round trip.
"""

import hashlib
from typing import Sequence, Tuple, Union

import base58

from .errors import InvalidAddress, InvalidSeed

# ed25519 field prime and curve constant d = -121665/121666
_P = 2 ** 255 - 19
_D = -121665 * pow(121666, _P - 2, _P) % _P

MAX_SEED_LENGTH = 32
MAX_SEEDS = 16
PDA_MARKER = b"ProgramDerivedAddress"

CONFIG_SEED = b"config"
VAULT_SEED = b"vault"
BENEFICIARY_SEED = b"beneficiary"

DEVNET_PROGRAM_ID = "BAmKovDnmFfuvXASrEoRa115N3F4QEBCkjUQtRAvkpAj"

PROGRAM_IDS = {
    "devnet": DEVNET_PROGRAM_ID,
    "testnet": DEVNET_PROGRAM_ID,
    "localnet": DEVNET_PROGRAM_ID,
}

AddressLike = Union[str, bytes]


def address_bytes(address: AddressLike) -> bytes:
    """
    Convert a base58 address (or raw bytes) to its 32-byte form.

    Raises:
        InvalidAddress: if the value does not decode to exactly 32 bytes
    """
    if isinstance(address, (bytes, bytearray)):
        raw = bytes(address)
    else:
        try:
            raw = base58.b58decode(address)
        except ValueError as e:
            raise InvalidAddress(f"Invalid base58 address: {address!r}") from e
    if len(raw) != 32:
        raise InvalidAddress(f"Address must be 32 bytes, got {len(raw)}")
    return raw


def address_str(raw: bytes) -> str:
    return base58.b58encode(raw).decode("ascii")


def is_on_curve(point: bytes) -> bool:
    """
    True if the 32 bytes decompress to an ed25519 point.

    Any decompressible point counts, small-order and torsion points included,
    which is stricter than libsodium's main-subgroup validity check.
    """
    y = int.from_bytes(point, "little") & ((1 << 255) - 1)
    y2 = y * y % _P
    u = (y2 - 1) % _P
    v = (_D * y2 + 1) % _P
    x2 = u * pow(v, _P - 2, _P) % _P
    # Euler's criterion: x2 must be zero or a quadratic residue
    return x2 == 0 or pow(x2, (_P - 1) // 2, _P) == 1


def _check_seeds(seeds: Sequence[bytes]) -> None:
    if len(seeds) > MAX_SEEDS:
        raise InvalidSeed(f"At most {MAX_SEEDS} seeds allowed, got {len(seeds)}")
    for seed in seeds:
        if len(seed) > MAX_SEED_LENGTH:
            raise InvalidSeed(
                f"Seed of {len(seed)} bytes exceeds max of {MAX_SEED_LENGTH}"
            )


def create_program_address(seeds: Sequence[bytes], program_id: AddressLike) -> bytes:
    """
    Hash seeds (bump included) into a candidate address.

    Raises:
        InvalidSeed: if the seeds are too long or the result lies on the curve
    """
    _check_seeds(seeds)
    hasher = hashlib.sha256()
    for seed in seeds:
        hasher.update(seed)
    hasher.update(address_bytes(program_id))
    hasher.update(PDA_MARKER)
    candidate = hasher.digest()
    if is_on_curve(candidate):
        raise InvalidSeed("Derived address lies on the ed25519 curve")
    return candidate


def find_program_address(
    seeds: Sequence[bytes],
    program_id: AddressLike,
) -> Tuple[str, int]:
    """
    Find the canonical program-derived address for a seed list.

    Args:
        seeds: Ordered seed byte sequences (without bump)
        program_id: Owning program

    Returns:
        Tuple of (base58_address, bump_seed)

    Example:
        >>> find_program_address([b"config", admin_bytes], program_id)
        ('9xQe...', 254)
    """
    seeds = [bytes(s) for s in seeds]
    # The bump seed takes one slot of the seed budget
    if len(seeds) > MAX_SEEDS - 1:
        raise InvalidSeed(f"At most {MAX_SEEDS - 1} seeds allowed with a bump")
    _check_seeds(seeds)
    for bump in range(255, -1, -1):
        try:
            candidate = create_program_address(seeds + [bytes([bump])], program_id)
        except InvalidSeed:
            continue
        return address_str(candidate), bump
    raise InvalidSeed("Unable to find a viable program address bump seed")


def program_id_for(cluster: str) -> str:
    """Program id deployed on the given cluster moniker."""
    try:
        return PROGRAM_IDS[cluster]
    except KeyError:
        raise ValueError(f"No FundsCycle deployment known for cluster {cluster!r}")


class AddressDeriver:
    """
    Canonical FundsCycle address derivations for one program id.

    Example:
        >>> deriver = AddressDeriver(DEVNET_PROGRAM_ID)
        >>> config, bump = deriver.config_address(admin)
        >>> vault, _ = deriver.vault_address(config)
    """

    def __init__(self, program_id: str = DEVNET_PROGRAM_ID):
        address_bytes(program_id)
        self.program_id = program_id

    def derive(self, seeds: Sequence[bytes]) -> Tuple[str, int]:
        return find_program_address(seeds, self.program_id)

    def config_address(self, admin: AddressLike) -> Tuple[str, int]:
        return self.derive([CONFIG_SEED, address_bytes(admin)])

    def vault_address(self, config: AddressLike) -> Tuple[str, int]:
        return self.derive([VAULT_SEED, address_bytes(config)])

    def beneficiary_address(self, config: AddressLike, wallet: AddressLike) -> Tuple[str, int]:
        return self.derive([
            BENEFICIARY_SEED,
            address_bytes(config),
            address_bytes(wallet),
        ])
