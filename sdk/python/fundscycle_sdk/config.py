"""
SDK configuration - environment-driven settings via pydantic-settings.

Every setting can be overridden with a FUNDSCYCLE_-prefixed environment
variable or a .env file. get_settings() is cached, one instance per process.
"""

from functools import lru_cache
from typing import Literal, Optional

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .addresses import program_id_for

CLUSTER_URLS = {
    "localnet": "http://127.0.0.1:8899",
    "devnet": "https://api.devnet.solana.com",
    "testnet": "https://api.testnet.solana.com",
}


class Settings(BaseSettings):
    """FundsCycle SDK settings."""

    model_config = SettingsConfigDict(
        env_prefix="FUNDSCYCLE_", env_file=".env", case_sensitive=False,
    )

    # Cluster
    cluster: Literal["localnet", "devnet", "testnet"] = "devnet"
    rpc_url: Optional[str] = None
    program_id: Optional[str] = None
    commitment: Literal["processed", "confirmed", "finalized"] = "confirmed"

    # Transport
    request_timeout: float = 30.0
    confirm_timeout: float = 60.0
    confirm_poll_interval: float = 0.5

    # Query policy
    query_retries: int = 2
    retry_delay: float = 0.25
    view_stale_seconds: float = 10.0
    list_stale_seconds: float = 60.0
    exists_stale_seconds: float = 30.0

    # Observability
    log_level: str = "INFO"
    log_format: Literal["json", "text"] = "text"

    @field_validator("query_retries")
    @classmethod
    def retries_bounded(cls, v: int) -> int:
        if not 0 <= v <= 10:
            raise ValueError("query_retries must be between 0 and 10")
        return v

    @model_validator(mode="after")
    def fill_cluster_defaults(self) -> "Settings":
        if self.rpc_url is None:
            self.rpc_url = CLUSTER_URLS[self.cluster]
        if self.program_id is None:
            self.program_id = program_id_for(self.cluster)
        return self


@lru_cache
def get_settings() -> Settings:
    return Settings()
