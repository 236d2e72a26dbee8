"""Account codec tests: layouts, discriminators and scan filters."""

import hashlib

import pytest

from fundscycle_sdk.addresses import address_bytes
from fundscycle_sdk.codec import (
    BENEFICIARY_LAYOUT,
    CONFIG_LAYOUT,
    VAULT_LAYOUT,
    decode,
    decode_or_raise,
    encode,
    scan_filters,
)
from fundscycle_sdk.crypto import KeypairSigner
from fundscycle_sdk.errors import DiscriminatorMismatchError, SizeMismatchError
from fundscycle_sdk.models import (
    Beneficiary,
    Config,
    DecodeOk,
    NotThisKind,
    SizeMismatch,
    Vault,
)


def _addr():
    return KeypairSigner.generate().public_key


@pytest.fixture
def config():
    return Config(
        admin=_addr(),
        collateral_amount=1_000_000_000,
        monthly_payout=100_000_000,
        payment_interval=2_592_000,
        max_beneficiaries=5,
        withdraw_percent=10,
        current_index=1,
        claims_completed=0,
        vault=_addr(),
        bump=254,
        vault_bump=253,
    )


@pytest.fixture
def beneficiary():
    return Beneficiary(
        config=_addr(),
        wallet=_addr(),
        index=2,
        collateral_paid=True,
        monthly_paid=False,
        bump=251,
    )


def test_layout_sizes():
    assert CONFIG_LAYOUT.size == 102
    assert VAULT_LAYOUT.size == 41
    assert BENEFICIARY_LAYOUT.size == 76


def test_discriminators_are_anchor_account_hashes():
    assert CONFIG_LAYOUT.discriminator == hashlib.sha256(b"account:Config").digest()[:8]
    assert len({CONFIG_LAYOUT.discriminator, VAULT_LAYOUT.discriminator,
                BENEFICIARY_LAYOUT.discriminator}) == 3


def test_round_trip_every_kind(config, beneficiary):
    vault = Vault(config=_addr(), bump=7)
    for record in (config, vault, beneficiary):
        result = decode(type(record), encode(record))
        assert isinstance(result, DecodeOk)
        assert result.record == record


def test_round_trip_extreme_values(config):
    big = Config(**{
        **config.__dict__,
        "collateral_amount": 2 ** 64 - 1,
        "monthly_payout": 2 ** 64 - 1,
        "payment_interval": -(2 ** 63),
        "current_index": 255,
    })
    assert decode_or_raise(Config, encode(big)) == big


def test_little_endian_field_placement(config):
    data = encode(config)
    assert data[:8] == CONFIG_LAYOUT.discriminator
    assert data[8:40] == address_bytes(config.admin)
    assert int.from_bytes(data[40:48], "little") == config.collateral_amount
    assert int.from_bytes(data[48:56], "little") == config.monthly_payout


def test_config_buffer_is_not_a_beneficiary(config):
    result = decode(Beneficiary, encode(config))
    assert isinstance(result, NotThisKind)
    assert result.expected == BENEFICIARY_LAYOUT.discriminator
    with pytest.raises(DiscriminatorMismatchError):
        decode_or_raise(Beneficiary, encode(config))


def test_discriminator_checked_before_size(beneficiary):
    truncated_wrong_kind = encode(beneficiary)[:20]
    assert isinstance(decode(Config, truncated_wrong_kind), NotThisKind)


def test_size_mismatch(beneficiary):
    data = encode(beneficiary) + b"\x00"
    result = decode(Beneficiary, data)
    assert result == SizeMismatch(expected=76, actual=77)
    with pytest.raises(SizeMismatchError):
        decode_or_raise(Beneficiary, data[:-2])


def test_empty_buffer_is_not_this_kind():
    assert isinstance(decode(Vault, b""), NotThisKind)


def test_scan_filters_match_encoded_fields(beneficiary):
    data = encode(beneficiary)
    filters = scan_filters(Beneficiary, config=beneficiary.config, wallet=beneficiary.wallet)
    assert filters[0] == {"memcmp": {"offset": 0, "bytes": BENEFICIARY_LAYOUT.discriminator}}
    assert filters[-1] == {"dataSize": 76}
    for f in filters[:-1]:
        offset, expected = f["memcmp"]["offset"], f["memcmp"]["bytes"]
        assert data[offset:offset + len(expected)] == expected


def test_scan_filters_reject_unknown_field():
    with pytest.raises(ValueError):
        scan_filters(Beneficiary, index=3)
