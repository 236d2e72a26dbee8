"""
Logical queries over on-chain FundsCycle state

Each query is a sequential async pipeline (derive -> fetch -> decode ->
derive dependent -> fetch) whose result is cached under a QueryKey with a
staleness window. Correctness after writes comes only from invalidation.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .addresses import AddressDeriver
from .cache import CacheEntry, QueryCache, QueryKey
from .client import FundsCycleClient
from .codec import decode, decode_or_raise, scan_filters
from .errors import (
    ErrorContext,
    FundsCycleError,
    GatewayError,
    NotFound,
    StaleDataError,
)
from .models import (
    AdministratorView,
    Beneficiary,
    BeneficiaryView,
    Config,
    DecodeOk,
    Vault,
)

logger = logging.getLogger("fundscycle.queries")

ADMINISTRATOR_VIEW = "administrator_view"
BENEFICIARY_VIEW = "beneficiary_view"
BENEFICIARY_LIST = "beneficiary_list"
ACCOUNT_EXISTS = "account_exists"
CONFIG_EXISTS = "config_exists"

ALL_QUERIES = (
    ADMINISTRATOR_VIEW,
    BENEFICIARY_VIEW,
    BENEFICIARY_LIST,
    ACCOUNT_EXISTS,
    CONFIG_EXISTS,
)

RETRYABLE = (GatewayError, StaleDataError)


class _Absent:
    """Cached NotFound outcome"""

    def __init__(self, error: NotFound):
        self.error = error


@dataclass(frozen=True)
class QueryState:
    """Observable state of one logical query"""
    status: str
    value: Any = None
    error: Optional[BaseException] = None
    fetched_at: Optional[float] = None
    attempts: int = 0

    @property
    def is_loading(self) -> bool:
        return self.status == "loading"


class QueryOrchestrator:
    """
    Composes dependent gateway calls into cached logical queries.

    Example:
        >>> orchestrator = QueryOrchestrator(client, AddressDeriver(program_id))
        >>> view = await orchestrator.administrator_view(wallet)
        >>> members = await orchestrator.beneficiary_list(view.config_address)
    """

    def __init__(
        self,
        client: FundsCycleClient,
        deriver: AddressDeriver,
        cache: Optional[QueryCache] = None,
        retries: int = 2,
        retry_delay: float = 0.25,
        view_stale_seconds: float = 10.0,
        list_stale_seconds: float = 60.0,
        exists_stale_seconds: float = 30.0,
    ):
        self.client = client
        self.deriver = deriver
        self.cache = cache if cache is not None else QueryCache()
        self.retries = retries
        self.retry_delay = retry_delay
        self.stale_times = {
            ADMINISTRATOR_VIEW: view_stale_seconds,
            BENEFICIARY_VIEW: view_stale_seconds,
            BENEFICIARY_LIST: list_stale_seconds,
            ACCOUNT_EXISTS: exists_stale_seconds,
            CONFIG_EXISTS: exists_stale_seconds,
        }
        self._attempts: Dict[QueryKey, int] = {}
        self._refreshing: Dict[QueryKey, asyncio.Task] = {}

    # Public queries

    async def administrator_view(self, identity: str) -> AdministratorView:
        """
        Config, vault and vault balance for the cycle administered by identity.

        Raises:
            NotFound: identity administers no cycle
            StaleDataError: a dependent fetch failed after retries
        """
        key = QueryKey.of(ADMINISTRATOR_VIEW, identity)
        return await self._query(key, lambda: self._load_administrator_view(identity))

    async def beneficiary_view(self, identity: str) -> BeneficiaryView:
        """
        The identity's beneficiary record and the cycle it belongs to.

        Raises:
            NotFound: identity is not a beneficiary anywhere
        """
        key = QueryKey.of(BENEFICIARY_VIEW, identity)
        return await self._query(key, lambda: self._load_beneficiary_view(identity))

    async def beneficiary_list(self, config_address: str) -> List[Beneficiary]:
        """All decodable beneficiaries of a cycle, ordered by rotation index."""
        key = QueryKey.of(BENEFICIARY_LIST, config_address)
        return await self._query(key, lambda: self._load_beneficiary_list(config_address))

    async def account_exists(self, address: str) -> bool:
        key = QueryKey.of(ACCOUNT_EXISTS, address)
        return await self._query(key, lambda: self.client.account_exists(address))

    async def config_exists(self, identity: str) -> bool:
        config_address, _ = self.deriver.config_address(identity)
        key = QueryKey.of(CONFIG_EXISTS, identity)
        return await self._query(key, lambda: self.client.account_exists(config_address))

    # Cache control

    def state(self, key: QueryKey) -> QueryState:
        entry = self.cache.get(key)
        attempts = self._attempts.get(key, 0)
        if self.cache.in_flight(key) and entry is None:
            return QueryState("loading", attempts=attempts)
        if entry is None:
            return QueryState("idle", attempts=attempts)
        if isinstance(entry.value, _Absent):
            return QueryState("error", error=entry.value.error, fetched_at=entry.fetched_at, attempts=attempts)
        return QueryState(
            entry.status,
            value=entry.value,
            error=entry.error,
            fetched_at=entry.fetched_at,
            attempts=attempts,
        )

    def invalidate(self, *names: str) -> int:
        """
        Invalidate every cached result of the named queries (all by default).

        Returns:
            Number of cache entries dropped
        """
        names = names or ALL_QUERIES
        for key in [k for k in self._refreshing if k.name in names]:
            self.cancel(key)
        for key in [k for k in self._attempts if k.name in names]:
            del self._attempts[key]
        removed = self.cache.invalidate_names(names)
        logger.debug(f"Invalidated {removed} cached results for {', '.join(names)}")
        return removed

    def cancel(self, key: QueryKey) -> None:
        """Cancel a background refresh; its result is discarded."""
        task = self._refreshing.pop(key, None)
        if task is not None and not task.done():
            task.cancel()

    async def close(self) -> None:
        tasks = list(self._refreshing.values())
        self._refreshing.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # Cache + retry machinery

    async def _query(self, key: QueryKey, load: Callable[[], Awaitable[Any]]) -> Any:
        entry = self.cache.get(key)
        if entry is not None and entry.status == "success":
            if entry.age(self.cache.clock()) >= self.stale_times[key.name]:
                self._refresh_in_background(key, load)
            return self._unwrap(entry)
        return await self._fetch(key, load)

    @staticmethod
    def _unwrap(entry: CacheEntry) -> Any:
        if isinstance(entry.value, _Absent):
            raise entry.value.error
        return entry.value

    async def _fetch(self, key: QueryKey, load: Callable[[], Awaitable[Any]]) -> Any:
        generation = self.cache.begin(key)
        try:
            try:
                value = await self._with_retries(key, load)
            except NotFound as e:
                self.cache.set_success(key, _Absent(e), generation)
                raise
            except FundsCycleError as e:
                self.cache.set_error(key, e, generation)
                raise
            self.cache.set_success(key, value, generation)
            return value
        finally:
            self.cache.end(key)

    async def _with_retries(self, key: QueryKey, load: Callable[[], Awaitable[Any]]) -> Any:
        attempt = 0
        while True:
            attempt += 1
            self._attempts[key] = attempt
            try:
                return await load()
            except RETRYABLE as e:
                if attempt > self.retries:
                    logger.error(
                        f"{key.name} failed after {attempt} attempts: {e.message}",
                        extra={"query": key.name, "attempt": attempt, "error_code": e.code},
                    )
                    raise
                logger.warning(
                    f"{key.name} attempt {attempt} failed, retrying: {e.message}",
                    extra={"query": key.name, "attempt": attempt},
                )
                await asyncio.sleep(self.retry_delay)

    def _refresh_in_background(self, key: QueryKey, load: Callable[[], Awaitable[Any]]) -> None:
        if key in self._refreshing:
            return
        task = asyncio.ensure_future(self._fetch(key, load))
        self._refreshing[key] = task

        def _done(t: asyncio.Task):
            if self._refreshing.get(key) is t:
                del self._refreshing[key]
            if not t.cancelled() and t.exception() is not None:
                exc = t.exception()
                if not isinstance(exc, NotFound):
                    logger.warning(f"Background refresh of {key.name} failed: {exc}")

        task.add_done_callback(_done)

    # Pipelines

    async def _load_administrator_view(self, identity: str) -> AdministratorView:
        config_address, _ = self.deriver.config_address(identity)
        data = await self.client.get_account(config_address)
        if data is None:
            raise NotFound(
                "No cycle is administered by this wallet",
                ErrorContext(query=ADMINISTRATOR_VIEW, address=config_address),
            )
        config = decode_or_raise(Config, data, config_address)
        vault_address, vault, balance = await self._load_vault(config_address, ADMINISTRATOR_VIEW)
        return AdministratorView(
            config=config,
            vault=vault,
            vault_balance=balance,
            config_address=config_address,
            vault_address=vault_address,
        )

    async def _load_beneficiary_view(self, identity: str) -> BeneficiaryView:
        matches = await self.client.scan_program_accounts(
            self.deriver.program_id,
            scan_filters(Beneficiary, wallet=identity),
        )
        found = None
        for address, data in matches:
            result = decode(Beneficiary, data)
            if isinstance(result, DecodeOk):
                found = (address, result.record)
                break
            logger.warning(f"Skipping undecodable beneficiary account {address}: {result}")
        if found is None:
            raise NotFound(
                "This wallet is not a beneficiary of any cycle",
                ErrorContext(query=BENEFICIARY_VIEW, address=identity),
            )
        beneficiary_address, beneficiary = found
        config_address = beneficiary.config

        try:
            data = await self.client.get_account(config_address)
        except GatewayError as e:
            raise StaleDataError(
                "Failed to load the cycle for this beneficiary",
                ErrorContext(query=BENEFICIARY_VIEW, address=config_address),
            ) from e
        if data is None:
            raise NotFound(
                "The cycle this wallet belonged to has been closed",
                ErrorContext(query=BENEFICIARY_VIEW, address=config_address),
            )
        config = decode_or_raise(Config, data, config_address)
        vault_address, vault, balance = await self._load_vault(config_address, BENEFICIARY_VIEW)
        return BeneficiaryView(
            beneficiary=beneficiary,
            beneficiary_address=beneficiary_address,
            config=config,
            vault=vault,
            vault_balance=balance,
            config_address=config_address,
            vault_address=vault_address,
        )

    async def _load_vault(self, config_address: str, query: str):
        vault_address, _ = self.deriver.vault_address(config_address)
        try:
            data, balance = await asyncio.gather(
                self.client.get_account(vault_address),
                self.client.get_balance(vault_address),
            )
        except GatewayError as e:
            raise StaleDataError(
                "Failed to load the cycle vault",
                ErrorContext(query=query, address=vault_address),
            ) from e
        if data is None:
            raise StaleDataError(
                "Cycle vault account is missing",
                ErrorContext(query=query, address=vault_address),
            )
        vault = decode_or_raise(Vault, data, vault_address)
        return vault_address, vault, balance

    async def _load_beneficiary_list(self, config_address: str) -> List[Beneficiary]:
        accounts = await self.client.scan_program_accounts(
            self.deriver.program_id,
            scan_filters(Beneficiary, config=config_address),
        )
        beneficiaries = []
        for address, data in accounts:
            result = decode(Beneficiary, data)
            if isinstance(result, DecodeOk):
                beneficiaries.append(result.record)
            else:
                logger.warning(
                    f"Dropping undecodable beneficiary account {address}: {result}",
                    extra={"query": BENEFICIARY_LIST, "address": address},
                )
        beneficiaries.sort(key=lambda b: b.index)
        return beneficiaries
