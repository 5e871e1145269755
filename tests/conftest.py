from __future__ import annotations

import asyncio
from typing import Any, Callable, Optional

import pytest

from routesync.domain.models import (
    ApiInfo,
    ApiRevision,
    OperationTagLink,
    RemoteOperation,
    Tag,
)
from routesync.errors import RegistryError
from routesync.registry.client import Page


class FakeRegistry:
    """
    In-memory RegistryClient. Lists are paged ``page_size`` items at a time,
    every call is recorded in ``calls`` and ``failing[method](*args)``
    returning True makes that call raise RegistryError.
    """

    def __init__(self, page_size: int = 2) -> None:
        self.page_size = page_size
        self.apis: list[ApiInfo] = []
        self.revisions: dict[str, list[ApiRevision]] = {}
        self.operations: dict[str, dict[str, RemoteOperation]] = {}
        self.operation_tags: dict[tuple[str, str], list[str]] = {}
        self.tags: dict[str, Tag] = {}
        self.policies: dict[tuple[str, str], str] = {}
        self.releases: list[tuple[str, str, str]] = []
        self.calls: list[tuple[str, tuple]] = []
        self.failing: dict[str, Callable[..., bool]] = {}
        self.closed = False

    # ----------------------------
    # Seeding
    # ----------------------------

    def add_api(self, name: str = "orders", display_name: str = "Orders", path: str = "orders",
                revision: int = 1, api_version: Optional[str] = None) -> ApiInfo:
        api = ApiInfo(
            id=f"/apis/{name}",
            name=name,
            display_name=display_name,
            path=path,
            api_version=api_version,
            api_revision=str(revision),
            is_current=True,
        )
        self.apis.append(api)
        self.revisions.setdefault(name, []).append(
            ApiRevision(api_id=api.id, api_revision=str(revision), is_current=True)
        )
        self.operations.setdefault(f"{name};rev={revision}", {})
        return api

    def add_tag(self, display_name: str) -> Tag:
        tag = Tag(name=f"{display_name}-id", display_name=display_name)
        self.tags[tag.name] = tag
        return tag

    def add_operation(self, api_name: str, name: str, url_template: str, method: str,
                      tags: tuple[str, ...] = (), **fields: Any) -> RemoteOperation:
        op = RemoteOperation(
            id=f"/apis/{api_name}/operations/{name}",
            name=name,
            url_template=url_template,
            method=method,
            **fields,
        )
        self.operations.setdefault(api_name, {})[name] = op
        for display_name in tags:
            tag = next((t for t in self.tags.values() if t.display_name == display_name), None)
            tag = tag or self.add_tag(display_name)
            self.operation_tags.setdefault((api_name, name), []).append(tag.name)
        return op

    # ----------------------------
    # Helpers
    # ----------------------------

    def _call(self, method: str, *args: Any) -> None:
        self.calls.append((method, args))
        pred = self.failing.get(method)
        if pred is not None and pred(*args):
            raise RegistryError(f"{method} failed", 500)

    def _page(self, items: list, next_link: Optional[str]) -> Page:
        start = int(next_link) if next_link else 0
        end = start + self.page_size
        return Page(items=items[start:end], next_link=str(end) if end < len(items) else None)

    def called(self, method: str) -> list[tuple]:
        return [args for name, args in self.calls if name == method]

    def tag_names_of(self, api_name: str, operation_id: str) -> list[str]:
        return [self.tags[t].display_name for t in self.operation_tags.get((api_name, operation_id), [])]

    # ----------------------------
    # RegistryClient
    # ----------------------------

    async def list_apis(self, next_link=None):
        self._call("list_apis", next_link)
        return self._page(self.apis, next_link)

    async def list_revisions(self, api_id, next_link=None):
        self._call("list_revisions", api_id, next_link)
        return self._page(self.revisions.get(api_id, []), next_link)

    async def list_operations(self, api_name, next_link=None):
        self._call("list_operations", api_name, next_link)
        return self._page(list(self.operations.get(api_name, {}).values()), next_link)

    async def list_operation_tags(self, api_name, next_link=None):
        self._call("list_operation_tags", api_name, next_link)
        links = [
            OperationTagLink(operation_name=op, tag_display_name=self.tags[t].display_name)
            for (api, op), tag_ids in self.operation_tags.items()
            if api == api_name
            for t in tag_ids
        ]
        return self._page(links, next_link)

    async def list_tags(self, next_link=None):
        self._call("list_tags", next_link)
        return self._page(list(self.tags.values()), next_link)

    async def create_or_update_operation(self, api_name, operation_id, body):
        self._call("create_or_update_operation", api_name, operation_id, body)
        op = RemoteOperation(id=f"/apis/{api_name}/operations/{operation_id}", name=operation_id, **body)
        self.operations.setdefault(api_name, {})[operation_id] = op
        return op

    async def delete_operation(self, api_name, operation_id):
        self._call("delete_operation", api_name, operation_id)
        self.operations.get(api_name, {}).pop(operation_id, None)
        self.operation_tags.pop((api_name, operation_id), None)

    async def assign_tag(self, api_name, operation_id, tag_id):
        self._call("assign_tag", api_name, operation_id, tag_id)
        assigned = self.operation_tags.setdefault((api_name, operation_id), [])
        if tag_id not in assigned:
            assigned.append(tag_id)

    async def detach_tag(self, api_name, operation_id, tag_id):
        self._call("detach_tag", api_name, operation_id, tag_id)
        assigned = self.operation_tags.get((api_name, operation_id), [])
        if tag_id in assigned:
            assigned.remove(tag_id)

    async def create_or_update_policy(self, api_name, operation_id, xml):
        self._call("create_or_update_policy", api_name, operation_id, xml)
        self.policies[(api_name, operation_id)] = xml

    async def create_tag(self, tag_id, display_name):
        # yield so concurrent callers can overlap
        await asyncio.sleep(0)
        self._call("create_tag", tag_id, display_name)
        tag = Tag(name=tag_id, display_name=display_name)
        self.tags[tag_id] = tag
        return tag

    async def create_revision(self, api_id, revision, source_api_id, path, description):
        self._call("create_revision", api_id, revision, source_api_id, path, description)
        source = source_api_id.rsplit("/", 1)[-1]
        if ";rev=" not in source:
            current = next(r for r in self.revisions[api_id] if r.is_current)
            source = f"{source};rev={current.api_revision}"

        new_name = f"{api_id};rev={revision}"
        self.operations[new_name] = dict(self.operations.get(source, {}))
        for (api, op), tag_ids in list(self.operation_tags.items()):
            if api == source:
                self.operation_tags[(new_name, op)] = list(tag_ids)
        self.revisions[api_id].append(ApiRevision(api_id=f"/apis/{new_name}", api_revision=str(revision)))
        return ApiInfo(id=f"/apis/{new_name}", name=new_name, path=path, api_revision=str(revision))

    async def create_release(self, api_id, release_id, api_full_id, notes):
        self._call("create_release", api_id, release_id, api_full_id, notes)
        self.releases.append((api_id, release_id, api_full_id))

    async def aclose(self):
        self.closed = True


@pytest.fixture
def fake_registry() -> FakeRegistry:
    registry = FakeRegistry()
    registry.add_api()
    return registry
