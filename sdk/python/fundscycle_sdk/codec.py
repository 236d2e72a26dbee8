"""
Binary account codec

Each account buffer starts with an 8-byte discriminator followed by a
fixed-size little-endian body. Scan filters are built from the same
constants as decode, so the two never disagree on record identity.
"""

import hashlib
import struct
from dataclasses import astuple
from typing import Dict, List, Optional, Type

from .addresses import address_bytes, address_str
from .errors import DiscriminatorMismatchError, SizeMismatchError, ErrorContext
from .models import (
    Beneficiary,
    Config,
    Decoded,
    DecodeOk,
    NotThisKind,
    Record,
    SizeMismatch,
    Vault,
)

DISCRIMINATOR_SIZE = 8


def account_discriminator(name: str) -> bytes:
    return hashlib.sha256(f"account:{name}".encode("ascii")).digest()[:DISCRIMINATOR_SIZE]


class AccountLayout:
    """Discriminator, struct format and field names for one record kind"""

    def __init__(self, record_type: Type, fmt: str, address_fields: tuple, offsets: Dict[str, int]):
        self.record_type = record_type
        self.name = record_type.__name__
        self.discriminator = account_discriminator(self.name)
        self.body = struct.Struct(fmt)
        self.size = DISCRIMINATOR_SIZE + self.body.size
        self.address_fields = address_fields
        self.offsets = offsets

    def __repr__(self):
        return f"AccountLayout({self.name}, size={self.size})"


CONFIG_LAYOUT = AccountLayout(
    Config,
    "<32sQQqBBBB32sBB",
    address_fields=("admin", "vault"),
    offsets={"admin": 8},
)

VAULT_LAYOUT = AccountLayout(
    Vault,
    "<32sB",
    address_fields=("config",),
    offsets={"config": 8},
)

BENEFICIARY_LAYOUT = AccountLayout(
    Beneficiary,
    "<32s32sB??B",
    address_fields=("config", "wallet"),
    offsets={"config": 8, "wallet": 40},
)

LAYOUTS = {
    Config: CONFIG_LAYOUT,
    Vault: VAULT_LAYOUT,
    Beneficiary: BENEFICIARY_LAYOUT,
}


def _layout_for(kind) -> AccountLayout:
    if isinstance(kind, AccountLayout):
        return kind
    try:
        return LAYOUTS[kind]
    except KeyError:
        raise TypeError(f"No account layout registered for {kind!r}")


def decode(kind, data: bytes) -> Decoded:
    """
    Decode a raw account buffer.

    Args:
        kind: Record class (Config, Vault, Beneficiary) or its layout
        data: Raw account bytes

    Returns:
        DecodeOk, NotThisKind or SizeMismatch
    """
    layout = _layout_for(kind)
    found = bytes(data[:DISCRIMINATOR_SIZE])
    if found != layout.discriminator:
        return NotThisKind(expected=layout.discriminator, found=found)
    if len(data) != layout.size:
        return SizeMismatch(expected=layout.size, actual=len(data))

    values = list(layout.body.unpack_from(data, DISCRIMINATOR_SIZE))
    names = [f for f in layout.record_type.__dataclass_fields__]
    fields = dict(zip(names, values))
    for name in layout.address_fields:
        fields[name] = address_str(fields[name])
    return DecodeOk(layout.record_type(**fields))


def decode_or_raise(kind, data: bytes, address: Optional[str] = None) -> Record:
    """Decode, turning the non-Ok variants into exceptions."""
    result = decode(kind, data)
    if isinstance(result, DecodeOk):
        return result.record
    layout = _layout_for(kind)
    ctx = ErrorContext(address=address)
    if isinstance(result, NotThisKind):
        raise DiscriminatorMismatchError(
            f"Account is not a {layout.name} (discriminator {result.found.hex()})", ctx
        )
    raise SizeMismatchError(
        f"{layout.name} account must be {result.expected} bytes, got {result.actual}", ctx
    )


def encode(record: Record) -> bytes:
    """Serialize a record into its account buffer."""
    layout = _layout_for(type(record))
    values = list(astuple(record))
    names = list(layout.record_type.__dataclass_fields__)
    for name in layout.address_fields:
        idx = names.index(name)
        values[idx] = address_bytes(values[idx])
    return layout.discriminator + layout.body.pack(*values)


def scan_filters(kind, **match) -> List[dict]:
    """
    Build getProgramAccounts filters for a record kind.

    Args:
        kind: Record class or layout
        **match: address field name -> base58 value to match

    Returns:
        memcmp filters (discriminator first) plus the exact dataSize
    """
    layout = _layout_for(kind)
    filters = [{"memcmp": {"offset": 0, "bytes": layout.discriminator}}]
    for name, value in match.items():
        if name not in layout.offsets:
            raise ValueError(f"{layout.name} has no filterable field {name!r}")
        filters.append({
            "memcmp": {"offset": layout.offsets[name], "bytes": address_bytes(value)}
        })
    filters.append({"dataSize": layout.size})
    return filters
