"""
Cryptographic utilities for FundsCycle: signers and wire transactions
"""

import json
from pathlib import Path
from typing import List, Sequence, Tuple, Union

import base58
from nacl.signing import SigningKey, VerifyKey
from nacl.exceptions import BadSignatureError

from .addresses import address_bytes, address_str
from .models import AccountMeta, Instruction

SIGNATURE_SIZE = 64


class Signer:
    """
    Wallet boundary: a public key plus the ability to sign message bytes.

    Browser or hardware wallets implement this interface; the SDK never
    holds their keys.
    """

    public_key: str

    def sign(self, message: bytes) -> bytes:
        raise NotImplementedError


class KeypairSigner(Signer):
    """
    Local Ed25519 keypair signer.

    Uses Ed25519 signatures via PyNaCl.
    """

    def __init__(self, signing_key: SigningKey):
        self._signing_key = signing_key
        self.public_key = address_str(bytes(signing_key.verify_key))

    @classmethod
    def generate(cls) -> "KeypairSigner":
        return cls(SigningKey.generate())

    @classmethod
    def from_secret_key(cls, secret: Union[bytes, str]) -> "KeypairSigner":
        """
        Load from a 64-byte secret (seed + public key) or a 32-byte seed.

        Args:
            secret: Raw bytes or base58 string
        """
        raw = base58.b58decode(secret) if isinstance(secret, str) else bytes(secret)
        if len(raw) not in (32, 64):
            raise ValueError(f"Secret key must be 32 or 64 bytes, got {len(raw)}")
        return cls(SigningKey(raw[:32]))

    @classmethod
    def from_json_file(cls, path: Union[str, Path]) -> "KeypairSigner":
        """Load a Solana CLI keypair file (JSON array of 64 integers)."""
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        return cls.from_secret_key(bytes(data))

    def sign(self, message: bytes) -> bytes:
        return self._signing_key.sign(message).signature


def encode_length(value: int) -> bytes:
    """Compact-u16 length prefix."""
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def _ordered_accounts(fee_payer: str, instructions: Sequence[Instruction]) -> List[AccountMeta]:
    merged = {fee_payer: [True, True]}
    order = [fee_payer]
    for ix in instructions:
        for meta in ix.accounts:
            if meta.address not in merged:
                merged[meta.address] = [False, False]
                order.append(meta.address)
            flags = merged[meta.address]
            flags[0] = flags[0] or meta.is_signer
            flags[1] = flags[1] or meta.is_writable
        if ix.program_id not in merged:
            merged[ix.program_id] = [False, False]
            order.append(ix.program_id)

    metas = [AccountMeta(addr, *merged[addr]) for addr in order]
    payer, rest = metas[0], metas[1:]
    # Stable sort keeps first-seen order within each group
    rest.sort(key=lambda m: (not m.is_signer, not m.is_writable))
    return [payer] + rest


def compile_message(
    fee_payer: str,
    instructions: Sequence[Instruction],
    recent_blockhash: str,
) -> Tuple[bytes, List[str]]:
    """
    Compile instructions into a legacy transaction message.

    Returns:
        Tuple of (message_bytes, required_signer_addresses)
    """
    metas = _ordered_accounts(fee_payer, instructions)
    index = {m.address: i for i, m in enumerate(metas)}
    signers = [m for m in metas if m.is_signer]

    header = bytes([
        len(signers),
        sum(1 for m in signers if not m.is_writable),
        sum(1 for m in metas if not m.is_signer and not m.is_writable),
    ])

    message = bytearray(header)
    message += encode_length(len(metas))
    for m in metas:
        message += address_bytes(m.address)
    message += address_bytes(recent_blockhash)
    message += encode_length(len(instructions))
    for ix in instructions:
        message.append(index[ix.program_id])
        message += encode_length(len(ix.accounts))
        message += bytes(index[a.address] for a in ix.accounts)
        message += encode_length(len(ix.data))
        message += ix.data
    return bytes(message), [m.address for m in signers]


class SignedTransaction:
    """Serialized transaction ready for submission"""

    def __init__(self, message: bytes, signatures: List[bytes]):
        self.message = message
        self.signatures = signatures

    @property
    def signature(self) -> str:
        """Transaction id (first signature, base58)"""
        return base58.b58encode(self.signatures[0]).decode("ascii")

    def serialize(self) -> bytes:
        return encode_length(len(self.signatures)) + b"".join(self.signatures) + self.message


class FundsCycleCrypto:
    """
    Transaction signing and verification helpers.
    """

    @staticmethod
    def generate_keypair() -> Tuple[str, str]:
        """
        Generate a new Ed25519 keypair.

        Returns:
            Tuple of (public_key_base58, secret_key_base58)

        Example:
            >>> public_key, secret_key = FundsCycleCrypto.generate_keypair()
            >>> print(f"Address: {public_key}")
        """
        signing_key = SigningKey.generate()
        public = bytes(signing_key.verify_key)
        secret = bytes(signing_key) + public
        return address_str(public), base58.b58encode(secret).decode("ascii")

    @staticmethod
    def sign_transaction(
        instructions: Sequence[Instruction],
        recent_blockhash: str,
        signers: Sequence[Signer],
    ) -> SignedTransaction:
        """
        Compile and sign a transaction. The first signer pays fees.

        Args:
            instructions: Instructions to include
            recent_blockhash: Blockhash from the cluster
            signers: Every signer the instructions require

        Returns:
            SignedTransaction
        """
        if not signers:
            raise ValueError("At least one signer is required")
        message, required = compile_message(signers[0].public_key, instructions, recent_blockhash)
        by_key = {s.public_key: s for s in signers}
        missing = [k for k in required if k not in by_key]
        if missing:
            raise ValueError(f"Missing signers: {', '.join(missing)}")
        signatures = [by_key[k].sign(message) for k in required]
        return SignedTransaction(message, signatures)

    @staticmethod
    def verify_transaction(transaction: SignedTransaction, signer_addresses: Sequence[str]) -> bool:
        """
        Verify every signature against the expected signer addresses.

        Returns:
            True if all signatures are valid, False otherwise
        """
        if len(signer_addresses) != len(transaction.signatures):
            return False
        try:
            for addr, sig in zip(signer_addresses, transaction.signatures):
                VerifyKey(address_bytes(addr)).verify(transaction.message, sig)
        except BadSignatureError:
            return False
        return True
