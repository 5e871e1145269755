from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Optional
from urllib.parse import quote

import httpx
from loguru import logger

from routesync.domain.models import (
    ApiInfo,
    ApiRevision,
    OperationTagLink,
    RemoteOperation,
    Tag,
)
from routesync.errors import RegistryError
from routesync.registry.client import Page

_RETRY_STATUS = (429, 500, 502, 503, 504)


@dataclass(frozen=True)
class AzureServiceRef:
    subscription_id: str
    resource_group: str
    service_name: str

    @property
    def root(self) -> str:
        return (
            f"/subscriptions/{self.subscription_id}"
            f"/resourceGroups/{self.resource_group}"
            f"/providers/Microsoft.ApiManagement/service/{self.service_name}"
        )


def _props(item: dict[str, Any]) -> dict[str, Any]:
    return item.get("properties") or item


def _last_segment(resource_id: str) -> str:
    return resource_id.rstrip("/").rsplit("/", 1)[-1]


def _q(segment: str) -> str:
    return quote(segment, safe=";=")


def parse_api(item: dict[str, Any]) -> ApiInfo:
    return ApiInfo(id=item["id"], name=item["name"], **_known(_props(item), ApiInfo))


def parse_operation(item: dict[str, Any]) -> RemoteOperation:
    return RemoteOperation(id=item["id"], name=item["name"], **_known(_props(item), RemoteOperation))


def parse_tag(item: dict[str, Any]) -> Tag:
    return Tag(name=item["name"], display_name=_props(item).get("displayName") or item["name"])


def _known(props: dict[str, Any], model: type) -> dict[str, Any]:
    # keep only the camelCase keys the model declares
    aliases = {f.alias or name for name, f in model.model_fields.items()} - {"id", "name"}
    return {k: v for k, v in props.items() if k in aliases and v is not None}


class AzureRegistryClient:
    """
    API Management over the ARM REST API.

    Every call is retried on 429/5xx and network errors with exponential
    backoff; other errors raise RegistryError straight away.
    """

    def __init__(
        self,
        service: AzureServiceRef,
        access_token: str,
        base_url: str = "https://management.azure.com",
        api_version: str = "2022-08-01",
        timeout: float = 30.0,
        max_attempts: int = 3,
        backoff_seconds: float = 0.5,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.service = service
        self.api_version = api_version
        self.max_attempts = max(1, max_attempts)
        self.backoff_seconds = backoff_seconds
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout),
            headers={
                "Accept": "application/json",
                "Content-Type": "application/json",
                "Authorization": f"Bearer {access_token}",
            },
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "AzureRegistryClient":
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.aclose()

    # ----------------------------
    # HTTP plumbing
    # ----------------------------

    async def _request(
        self,
        method: str,
        url: str,
        *,
        body: Optional[dict[str, Any]] = None,
        headers: Optional[dict[str, str]] = None,
        absolute: bool = False,
    ) -> Optional[dict[str, Any]]:
        params = None if absolute else {"api-version": self.api_version}
        last_err: Optional[Exception] = None

        for attempt in range(1, self.max_attempts + 1):
            try:
                r = await self._client.request(method, url, params=params, json=body, headers=headers)
                if r.status_code in _RETRY_STATUS:
                    raise RegistryError(f"{method} {url}: HTTP {r.status_code}: {r.text[:200]}", r.status_code)
                if r.status_code >= 400:
                    raise RegistryError(f"{method} {url}: HTTP {r.status_code}: {r.text[:500]}", r.status_code)
                if not r.content:
                    return None
                return r.json()
            except RegistryError as e:
                if e.status_code not in _RETRY_STATUS:
                    raise
                last_err = e
            except (httpx.TimeoutException, httpx.NetworkError) as e:
                last_err = RegistryError(f"{method} {url}: {e}")

            if attempt < self.max_attempts:
                delay = self.backoff_seconds * (2 ** (attempt - 1))
                logger.warning("Retrying {} {} in {:.2f}s ({})", method, url, delay, last_err)
                await asyncio.sleep(min(5.0, delay))

        if last_err is None:
            raise RegistryError(f"{method} {url}: no attempt made")
        raise last_err

    async def _page(self, url: str, next_link: Optional[str]) -> tuple[list[dict[str, Any]], Optional[str]]:
        if next_link:
            data = await self._request("GET", next_link, absolute=True)
        else:
            data = await self._request("GET", url)
        data = data or {}
        return list(data.get("value") or []), data.get("nextLink")

    def _api_url(self, api_name: str) -> str:
        return f"{self.service.root}/apis/{_q(api_name)}"

    # ----------------------------
    # Listing
    # ----------------------------

    async def list_apis(self, next_link: Optional[str] = None) -> Page[ApiInfo]:
        items, nxt = await self._page(f"{self.service.root}/apis", next_link)
        return Page(items=[parse_api(i) for i in items], next_link=nxt)

    async def list_revisions(self, api_id: str, next_link: Optional[str] = None) -> Page[ApiRevision]:
        items, nxt = await self._page(f"{self._api_url(api_id)}/revisions", next_link)
        revisions = []
        for i in items:
            p = _props(i)
            revisions.append(
                ApiRevision(
                    api_id=p.get("apiId") or i.get("id", ""),
                    api_revision=str(p.get("apiRevision", "")),
                    is_current=p.get("isCurrent"),
                )
            )
        return Page(items=revisions, next_link=nxt)

    async def list_operations(self, api_name: str, next_link: Optional[str] = None) -> Page[RemoteOperation]:
        items, nxt = await self._page(f"{self._api_url(api_name)}/operations", next_link)
        return Page(items=[parse_operation(i) for i in items], next_link=nxt)

    async def list_operation_tags(
        self, api_name: str, next_link: Optional[str] = None
    ) -> Page[OperationTagLink]:
        items, nxt = await self._page(f"{self._api_url(api_name)}/operationsByTags", next_link)
        links = []
        for i in items:
            tag, op = i.get("tag"), i.get("operation")
            if not tag or not op:
                continue
            links.append(
                OperationTagLink(operation_name=_last_segment(op["id"]), tag_display_name=tag["name"])
            )
        return Page(items=links, next_link=nxt)

    async def list_tags(self, next_link: Optional[str] = None) -> Page[Tag]:
        items, nxt = await self._page(f"{self.service.root}/tags", next_link)
        return Page(items=[parse_tag(i) for i in items], next_link=nxt)

    # ----------------------------
    # Writes
    # ----------------------------

    async def create_or_update_operation(
        self, api_name: str, operation_id: str, body: dict[str, Any]
    ) -> RemoteOperation:
        url = f"{self._api_url(api_name)}/operations/{_q(operation_id)}"
        data = await self._request("PUT", url, body={"properties": body})
        if not data:
            return RemoteOperation(id=url, name=operation_id, **_known(body, RemoteOperation))
        return parse_operation(data)

    async def delete_operation(self, api_name: str, operation_id: str) -> None:
        url = f"{self._api_url(api_name)}/operations/{_q(operation_id)}"
        await self._request("DELETE", url, headers={"If-Match": "*"})

    async def assign_tag(self, api_name: str, operation_id: str, tag_id: str) -> None:
        url = f"{self._api_url(api_name)}/operations/{_q(operation_id)}/tags/{_q(tag_id)}"
        await self._request("PUT", url)

    async def detach_tag(self, api_name: str, operation_id: str, tag_id: str) -> None:
        url = f"{self._api_url(api_name)}/operations/{_q(operation_id)}/tags/{_q(tag_id)}"
        await self._request("DELETE", url)

    async def create_or_update_policy(self, api_name: str, operation_id: str, xml: str) -> None:
        url = f"{self._api_url(api_name)}/operations/{_q(operation_id)}/policies/policy"
        await self._request("PUT", url, body={"properties": {"format": "rawxml", "value": xml}})

    async def create_tag(self, tag_id: str, display_name: str) -> Tag:
        url = f"{self.service.root}/tags/{_q(tag_id)}"
        data = await self._request("PUT", url, body={"properties": {"displayName": display_name}})
        return parse_tag(data) if data else Tag(name=tag_id, display_name=display_name)

    async def create_revision(
        self, api_id: str, revision: int, source_api_id: str, path: Optional[str], description: str
    ) -> ApiInfo:
        body: dict[str, Any] = {"sourceApiId": source_api_id, "apiRevisionDescription": description}
        if path is not None:
            body["path"] = path
        data = await self._request("PUT", self._api_url(f"{api_id};rev={revision}"), body={"properties": body})
        if not data:
            raise RegistryError(f"Empty response creating revision {revision} of {api_id}")
        return parse_api(data)

    async def create_release(self, api_id: str, release_id: str, api_full_id: str, notes: str) -> None:
        url = f"{self._api_url(api_id)}/releases/{_q(release_id)}"
        await self._request("PUT", url, body={"properties": {"apiId": api_full_id, "notes": notes}})
