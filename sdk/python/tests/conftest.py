"""Shared fixtures: an in-memory gateway and helpers to lay out a cycle on it."""

from dataclasses import replace

import pytest

from fundscycle_sdk.addresses import DEVNET_PROGRAM_ID, AddressDeriver
from fundscycle_sdk.codec import decode_or_raise, encode
from fundscycle_sdk.crypto import KeypairSigner
from fundscycle_sdk.errors import GatewayError
from fundscycle_sdk.models import Beneficiary, Config, Confirmation, Vault
from fundscycle_sdk.queries import QueryOrchestrator
from fundscycle_sdk.mutations import MutationExecutor

BLOCKHASH = "11111111111111111111111111111111"


def _matches(f, data):
    if "memcmp" in f:
        offset = f["memcmp"]["offset"]
        expected = f["memcmp"]["bytes"]
        return data[offset:offset + len(expected)] == expected
    return len(data) == f["dataSize"]


class FakeGateway:
    """Stands in for FundsCycleClient; records calls and injects failures."""

    def __init__(self):
        self.accounts = {}
        self.balances = {}
        self.calls = []
        self.failures = {}
        self.extra_scan_results = []
        self.submitted = []
        self.submit_error = None
        self.on_submit = None
        self.gate = None
        self.submit_gate = None

    def _record(self, method, arg=None):
        self.calls.append((method, arg))
        remaining = self.failures.get(method, 0)
        if remaining:
            self.failures[method] = remaining - 1
            raise GatewayError(f"injected {method} failure")

    def count(self, method=None):
        return sum(1 for m, _ in self.calls if method is None or m == method)

    def reads(self):
        return sum(1 for m, _ in self.calls if m != "submit")

    async def get_account(self, address):
        self._record("get_account", address)
        if self.gate is not None:
            await self.gate.wait()
        return self.accounts.get(address)

    async def account_exists(self, address):
        self._record("account_exists", address)
        return address in self.accounts

    async def get_balance(self, address):
        self._record("get_balance", address)
        return self.balances.get(address, 0)

    async def scan_program_accounts(self, program_id, filters):
        self._record("scan_program_accounts", program_id)
        found = [
            (address, data)
            for address, data in self.accounts.items()
            if all(_matches(f, data) for f in filters)
        ]
        return found + list(self.extra_scan_results)

    async def get_latest_blockhash(self):
        self._record("get_latest_blockhash")
        return BLOCKHASH

    async def submit(self, transaction):
        self._record("submit")
        if self.submit_gate is not None:
            await self.submit_gate.wait()
        self.submitted.append(transaction)
        if self.submit_error is not None:
            raise self.submit_error
        if self.on_submit is not None:
            self.on_submit(transaction)
        return Confirmation(signature=transaction.signature, slot=42)

    def close(self):
        self.closed = True


class CycleFixture:
    """Writes Config, Vault and Beneficiary accounts onto a FakeGateway."""

    def __init__(self, gateway, deriver):
        self.gateway = gateway
        self.deriver = deriver

    def create(
        self,
        admin,
        members=(),
        max_beneficiaries=5,
        current_index=0,
        claims_completed=0,
        collateral_amount=1_000_000_000,
        monthly_payout=100_000_000,
        vault_balance=0,
        collateral_paid=False,
        monthly_paid=False,
    ):
        config_address, bump = self.deriver.config_address(admin)
        vault_address, vault_bump = self.deriver.vault_address(config_address)
        config = Config(
            admin=admin,
            collateral_amount=collateral_amount,
            monthly_payout=monthly_payout,
            payment_interval=30 * 86400,
            max_beneficiaries=max_beneficiaries,
            withdraw_percent=10,
            current_index=current_index,
            claims_completed=claims_completed,
            vault=vault_address,
            bump=bump,
            vault_bump=vault_bump,
        )
        self.gateway.accounts[config_address] = encode(config)
        self.gateway.accounts[vault_address] = encode(Vault(config=config_address, bump=vault_bump))
        self.gateway.balances[vault_address] = vault_balance
        for index, wallet in enumerate(members):
            self.add_member(config_address, wallet, index, collateral_paid, monthly_paid)
        return config_address

    def add_member(self, config_address, wallet, index, collateral_paid=False, monthly_paid=False):
        address, bump = self.deriver.beneficiary_address(config_address, wallet)
        self.gateway.accounts[address] = encode(Beneficiary(
            config=config_address,
            wallet=wallet,
            index=index,
            collateral_paid=collateral_paid,
            monthly_paid=monthly_paid,
            bump=bump,
        ))
        return address

    def update_member(self, config_address, wallet, **changes):
        address, _ = self.deriver.beneficiary_address(config_address, wallet)
        current = decode_or_raise(Beneficiary, self.gateway.accounts[address])
        self.gateway.accounts[address] = encode(replace(current, **changes))


@pytest.fixture
def deriver():
    return AddressDeriver(DEVNET_PROGRAM_ID)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def cycle(gateway, deriver):
    return CycleFixture(gateway, deriver)


@pytest.fixture
def admin():
    return KeypairSigner.generate()


@pytest.fixture
def members():
    return [KeypairSigner.generate() for _ in range(6)]


@pytest.fixture
def orchestrator(gateway, deriver):
    return QueryOrchestrator(gateway, deriver, retries=2, retry_delay=0)


@pytest.fixture
def executor(gateway, orchestrator):
    return MutationExecutor(gateway, orchestrator)
