from __future__ import annotations

import json
import subprocess
from dataclasses import dataclass
from typing import Optional

from loguru import logger

from routesync.config import Settings
from routesync.errors import AuthenticationError
from routesync.registry.azure import AzureRegistryClient, AzureServiceRef

ARM_RESOURCE = "https://management.azure.com/"


@dataclass(frozen=True)
class Credentials:
    access_token: str
    subscription_id: Optional[str] = None


def _az_cli_token(az_path: str) -> Credentials:
    """Token of the account logged in with ``az login``."""
    try:
        out = subprocess.check_output(
            [az_path, "account", "get-access-token", "--resource", ARM_RESOURCE, "--output", "json"],
            stderr=subprocess.PIPE,
            text=True,
        )
    except FileNotFoundError as e:
        raise AuthenticationError(f"Azure CLI not found at '{az_path}'") from e
    except subprocess.CalledProcessError as e:
        detail = (e.stderr or "").strip().splitlines()
        raise AuthenticationError(
            f"az account get-access-token failed: {detail[-1] if detail else e.returncode}"
        ) from e

    try:
        data = json.loads(out)
    except json.JSONDecodeError as e:
        raise AuthenticationError("az returned a non-JSON token response") from e

    token = data.get("accessToken")
    if not token:
        raise AuthenticationError("az returned no accessToken")
    return Credentials(access_token=token, subscription_id=data.get("subscription"))


def acquire_credentials(s: Settings) -> Credentials:
    if s.ACCESS_TOKEN:
        return Credentials(access_token=s.ACCESS_TOKEN, subscription_id=s.SUBSCRIPTION_ID)
    logger.info("No access token configured, asking the Azure CLI")
    return _az_cli_token(s.AZ_CLI_PATH)


def authenticate(s: Settings) -> AzureRegistryClient:
    """Build an authenticated registry client or raise AuthenticationError."""
    creds = acquire_credentials(s)

    subscription = s.SUBSCRIPTION_ID or creds.subscription_id
    if not subscription:
        raise AuthenticationError("No subscription id configured or reported by the Azure CLI")
    if not s.RESOURCE_GROUP or not s.SERVICE_NAME:
        raise AuthenticationError("RESOURCE_GROUP and SERVICE_NAME must be configured")

    return AzureRegistryClient(
        AzureServiceRef(
            subscription_id=subscription,
            resource_group=s.RESOURCE_GROUP,
            service_name=s.SERVICE_NAME,
        ),
        access_token=creds.access_token,
        base_url=s.ARM_BASE_URL,
        api_version=s.ARM_API_VERSION,
        timeout=s.HTTP_TIMEOUT_SECONDS,
        max_attempts=s.RETRY_MAX_ATTEMPTS,
        backoff_seconds=s.RETRY_BACKOFF_SECONDS,
    )
