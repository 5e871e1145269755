from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="ROUTESYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    # Target API Management service
    SUBSCRIPTION_ID: Optional[str] = None
    RESOURCE_GROUP: Optional[str] = None
    SERVICE_NAME: Optional[str] = None
    # API name, display name or path; "<id>;rev=<n>" pins a revision
    API_ID: Optional[str] = None
    API_VERSION: Optional[str] = None

    # Sync behaviour
    BASE_PATH: str = ""
    BREAK_ON_SAME_PATH: bool = False
    GENERATE_NEW_REVISION: bool = True
    # Unset means "same as GENERATE_NEW_REVISION"
    MAKE_NEW_REVISION_AS_CURRENT: Optional[bool] = None

    # Auth: a bearer token for management.azure.com; falls back to the az CLI
    ACCESS_TOKEN: Optional[str] = None
    AZ_CLI_PATH: str = "az"

    # Transport
    ARM_BASE_URL: str = "https://management.azure.com"
    ARM_API_VERSION: str = "2022-08-01"
    HTTP_TIMEOUT_SECONDS: float = 30.0
    RETRY_MAX_ATTEMPTS: int = 3
    RETRY_BACKOFF_SECONDS: float = 0.5

    # Lane counts; kept low to stay under the management API rate limits
    MAX_PARALLEL_OPERATIONS: int = 5
    MAX_PARALLEL_TAGS: int = 2


settings = Settings()


@dataclass(frozen=True)
class SyncConfig:
    base_path: str = ""
    break_on_same_path: bool = False
    generate_new_revision: bool = True
    make_new_revision_as_current: Optional[bool] = None
    max_parallel_operations: int = 5
    max_parallel_tags: int = 2

    @property
    def promote_revision(self) -> bool:
        if self.make_new_revision_as_current is None:
            return self.generate_new_revision
        return self.make_new_revision_as_current

    @classmethod
    def from_settings(cls, s: Settings) -> "SyncConfig":
        return cls(
            base_path=s.BASE_PATH,
            break_on_same_path=s.BREAK_ON_SAME_PATH,
            generate_new_revision=s.GENERATE_NEW_REVISION,
            make_new_revision_as_current=s.MAKE_NEW_REVISION_AS_CURRENT,
            max_parallel_operations=s.MAX_PARALLEL_OPERATIONS,
            max_parallel_tags=s.MAX_PARALLEL_TAGS,
        )
