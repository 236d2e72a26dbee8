"""Query orchestration tests: pipelines, retries, staleness, cancellation."""

import asyncio

import pytest

from fundscycle_sdk.cache import QueryCache, QueryKey
from fundscycle_sdk.codec import encode
from fundscycle_sdk.errors import (
    DiscriminatorMismatchError,
    GatewayError,
    NotFound,
    StaleDataError,
)
from fundscycle_sdk.models import AdministratorView, BeneficiaryView, Vault
from fundscycle_sdk.queries import (
    ADMINISTRATOR_VIEW,
    BENEFICIARY_LIST,
    BENEFICIARY_VIEW,
    QueryOrchestrator,
)


async def test_administrator_view(orchestrator, gateway, cycle, admin):
    config_address = cycle.create(admin.public_key, vault_balance=3_000_000_000)
    view = await orchestrator.administrator_view(admin.public_key)
    assert isinstance(view, AdministratorView)
    assert view.config_address == config_address
    assert view.config.admin == admin.public_key
    assert view.vault.config == config_address
    assert view.vault_balance == 3_000_000_000
    assert view.vault_address == view.config.vault


async def test_administrator_view_not_found(orchestrator, gateway, admin):
    with pytest.raises(NotFound):
        await orchestrator.administrator_view(admin.public_key)
    # A valid absence is cached, not retried
    assert gateway.count("get_account") == 1
    with pytest.raises(NotFound):
        await orchestrator.administrator_view(admin.public_key)
    assert gateway.count("get_account") == 1


async def test_transient_failure_is_retried(orchestrator, gateway, cycle, admin):
    cycle.create(admin.public_key)
    gateway.failures["get_account"] = 1
    view = await orchestrator.administrator_view(admin.public_key)
    assert view.config.max_beneficiaries == 5
    key = QueryKey.of(ADMINISTRATOR_VIEW, admin.public_key)
    assert orchestrator.state(key).attempts == 2
    assert orchestrator.state(key).status == "success"


async def test_first_step_failure_surfaces_gateway_error(orchestrator, gateway, cycle, admin):
    cycle.create(admin.public_key)
    gateway.failures["get_account"] = 10
    with pytest.raises(GatewayError):
        await orchestrator.administrator_view(admin.public_key)
    assert gateway.count("get_account") == 3


async def test_dependent_failure_surfaces_stale_data(orchestrator, gateway, cycle, admin):
    cycle.create(admin.public_key)
    gateway.failures["get_balance"] = 3
    with pytest.raises(StaleDataError):
        await orchestrator.administrator_view(admin.public_key)
    key = QueryKey.of(ADMINISTRATOR_VIEW, admin.public_key)
    state = orchestrator.state(key)
    assert state.status == "error"
    assert state.value is None


async def test_error_result_is_refetched(orchestrator, gateway, cycle, admin):
    cycle.create(admin.public_key)
    gateway.failures["get_balance"] = 3
    with pytest.raises(StaleDataError):
        await orchestrator.administrator_view(admin.public_key)
    view = await orchestrator.administrator_view(admin.public_key)
    assert view.vault_balance == 0


async def test_fresh_result_served_from_cache(orchestrator, gateway, cycle, admin):
    cycle.create(admin.public_key)
    await orchestrator.administrator_view(admin.public_key)
    reads = gateway.reads()
    await orchestrator.administrator_view(admin.public_key)
    assert gateway.reads() == reads


async def test_stale_result_served_then_refreshed(gateway, deriver, cycle, admin):
    now = [1000.0]
    orchestrator = QueryOrchestrator(
        gateway, deriver, QueryCache(clock=lambda: now[0]), retry_delay=0,
    )
    config_address = cycle.create(admin.public_key, vault_balance=5)
    first = await orchestrator.administrator_view(admin.public_key)

    gateway.balances[first.vault_address] = 9
    now[0] += 11
    stale = await orchestrator.administrator_view(admin.public_key)
    assert stale.vault_balance == 5

    await asyncio.gather(*orchestrator._refreshing.values())
    fresh = await orchestrator.administrator_view(admin.public_key)
    assert fresh.vault_balance == 9
    assert fresh.config_address == config_address


async def test_beneficiary_view(orchestrator, cycle, admin, members):
    wallets = [m.public_key for m in members[:3]]
    config_address = cycle.create(admin.public_key, wallets, current_index=1)
    view = await orchestrator.beneficiary_view(wallets[2])
    assert isinstance(view, BeneficiaryView)
    assert view.beneficiary.wallet == wallets[2]
    assert view.beneficiary.index == 2
    assert view.config_address == config_address
    assert view.config.current_index == 1


async def test_beneficiary_view_not_found(orchestrator, cycle, admin, members):
    cycle.create(admin.public_key, [members[0].public_key])
    with pytest.raises(NotFound):
        await orchestrator.beneficiary_view(members[1].public_key)


async def test_beneficiary_list_is_ordered_and_scoped(orchestrator, cycle, admin, members):
    wallets = [m.public_key for m in members[:4]]
    config_address = cycle.create(admin.public_key, wallets)
    cycle.create(members[5].public_key, [members[4].public_key])
    result = await orchestrator.beneficiary_list(config_address)
    assert [b.wallet for b in result] == wallets
    assert [b.index for b in result] == [0, 1, 2, 3]


async def test_partial_scan_failure_keeps_other_entries(orchestrator, gateway, cycle, admin, members):
    wallets = [m.public_key for m in members[:5]]
    config_address = cycle.create(admin.public_key, wallets)
    broken_address, _ = cycle.deriver.beneficiary_address(config_address, wallets[3])
    broken = gateway.accounts.pop(broken_address)
    gateway.extra_scan_results.append((broken_address, broken[:-3]))

    result = await orchestrator.beneficiary_list(config_address)
    assert len(result) == 4
    assert wallets[3] not in [b.wallet for b in result]


async def test_cancelled_query_does_not_touch_cache(orchestrator, gateway, cycle, admin):
    cycle.create(admin.public_key)
    gateway.gate = asyncio.Event()
    task = asyncio.ensure_future(orchestrator.administrator_view(admin.public_key))
    for _ in range(3):
        await asyncio.sleep(0)
    assert orchestrator.state(QueryKey.of(ADMINISTRATOR_VIEW, admin.public_key)).is_loading

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    key = QueryKey.of(ADMINISTRATOR_VIEW, admin.public_key)
    assert key not in orchestrator.cache
    assert orchestrator.state(key).status == "idle"


async def test_invalidation_during_fetch_discards_result(orchestrator, gateway, cycle, admin):
    cycle.create(admin.public_key)
    gateway.gate = asyncio.Event()
    task = asyncio.ensure_future(orchestrator.administrator_view(admin.public_key))
    for _ in range(3):
        await asyncio.sleep(0)

    orchestrator.invalidate()
    gateway.gate.set()
    view = await task
    assert view.config.admin == admin.public_key
    assert QueryKey.of(ADMINISTRATOR_VIEW, admin.public_key) not in orchestrator.cache


async def test_invalidate_by_name(orchestrator, cycle, admin, members):
    config_address = cycle.create(admin.public_key, [members[0].public_key])
    await orchestrator.administrator_view(admin.public_key)
    await orchestrator.beneficiary_list(config_address)
    assert orchestrator.invalidate(BENEFICIARY_LIST) == 1
    assert QueryKey.of(ADMINISTRATOR_VIEW, admin.public_key) in orchestrator.cache
    assert QueryKey.of(BENEFICIARY_LIST, config_address) not in orchestrator.cache


async def test_existence_queries(orchestrator, cycle, admin, members):
    assert await orchestrator.config_exists(admin.public_key) is False
    config_address = cycle.create(admin.public_key)
    # Cached absence until invalidated
    assert await orchestrator.config_exists(admin.public_key) is False
    orchestrator.invalidate()
    assert await orchestrator.config_exists(admin.public_key) is True
    assert await orchestrator.account_exists(config_address) is True


async def test_undecodable_config_is_fatal(orchestrator, gateway, cycle, admin):
    config_address = cycle.create(admin.public_key)
    gateway.accounts[config_address] = encode(Vault(config=config_address))
    with pytest.raises(DiscriminatorMismatchError):
        await orchestrator.administrator_view(admin.public_key)
    assert gateway.count("get_account") == 1


async def test_beneficiary_view_config_failure_is_stale_data(orchestrator, gateway, cycle, admin, members):
    cycle.create(admin.public_key, [members[0].public_key])
    gateway.failures["get_account"] = 3
    with pytest.raises(StaleDataError):
        await orchestrator.beneficiary_view(members[0].public_key)
    assert gateway.count("scan_program_accounts") == 3


async def test_beneficiary_view_vault_failure_is_stale_data(orchestrator, gateway, cycle, admin, members):
    cycle.create(admin.public_key, [members[0].public_key])
    gateway.failures["get_balance"] = 3
    with pytest.raises(StaleDataError):
        await orchestrator.beneficiary_view(members[0].public_key)
    key = QueryKey.of(BENEFICIARY_VIEW, members[0].public_key)
    assert orchestrator.state(key).status == "error"


async def test_invalidate_resets_attempt_counts(orchestrator, gateway, cycle, admin):
    cycle.create(admin.public_key)
    gateway.failures["get_account"] = 1
    await orchestrator.administrator_view(admin.public_key)
    key = QueryKey.of(ADMINISTRATOR_VIEW, admin.public_key)
    assert orchestrator.state(key).attempts == 2
    orchestrator.invalidate()
    assert orchestrator.state(key).attempts == 0
    assert orchestrator._attempts == {}
