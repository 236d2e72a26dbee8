"""
Process-wide wiring of client, cache, queries and mutations

Built once at startup and torn down with the process; there is no module
level cache singleton.
"""

import logging
from typing import Optional

from .addresses import AddressDeriver
from .cache import QueryCache
from .client import FundsCycleClient
from .config import Settings, get_settings
from .mutations import MutationExecutor
from .observability import setup_logging
from .queries import QueryOrchestrator
from .roles import RoleResolver

logger = logging.getLogger("fundscycle.context")


class FundsCycleContext:
    """
    Owns every stateful SDK component.

    Example:
        >>> async with FundsCycleContext.from_settings() as ctx:
        ...     role = await ctx.roles.resolve(wallet.public_key)
        ...     if role.is_beneficiary:
        ...         await ctx.mutations.deposit_monthly(wallet)
    """

    def __init__(self, settings: Settings, client: Optional[FundsCycleClient] = None):
        self.settings = settings
        self.deriver = AddressDeriver(settings.program_id)
        self.client = client or FundsCycleClient(
            settings.rpc_url,
            timeout=settings.request_timeout,
            commitment=settings.commitment,
            confirm_timeout=settings.confirm_timeout,
            poll_interval=settings.confirm_poll_interval,
        )
        self.cache = QueryCache()
        self.queries = QueryOrchestrator(
            self.client,
            self.deriver,
            self.cache,
            retries=settings.query_retries,
            retry_delay=settings.retry_delay,
            view_stale_seconds=settings.view_stale_seconds,
            list_stale_seconds=settings.list_stale_seconds,
            exists_stale_seconds=settings.exists_stale_seconds,
        )
        self.roles = RoleResolver(self.queries)
        self.mutations = MutationExecutor(self.client, self.queries)

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None, configure_logging: bool = False):
        settings = settings or get_settings()
        if configure_logging:
            setup_logging(settings.log_level, settings.log_format)
        logger.info(f"FundsCycle context on {settings.cluster} ({settings.rpc_url})")
        return cls(settings)

    async def close(self) -> None:
        await self.queries.close()
        self.cache.clear()
        self.client.close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        await self.close()
