from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Generic, Optional, Protocol, TypeVar

from routesync.domain.models import (
    ApiInfo,
    ApiRevision,
    OperationTagLink,
    RemoteOperation,
    Tag,
)

T = TypeVar("T")


@dataclass(frozen=True)
class Page(Generic[T]):
    items: list[T] = field(default_factory=list)
    next_link: Optional[str] = None


class RegistryClient(Protocol):
    """
    Remote API-management registry. ``api_name`` is "<api id>;rev=<n>".

    List calls return one page; pass the page's ``next_link`` back to get
    the following one.
    """

    async def list_apis(self, next_link: Optional[str] = None) -> Page[ApiInfo]: ...

    async def list_revisions(self, api_id: str, next_link: Optional[str] = None) -> Page[ApiRevision]: ...

    async def list_operations(self, api_name: str, next_link: Optional[str] = None) -> Page[RemoteOperation]: ...

    async def list_operation_tags(
        self, api_name: str, next_link: Optional[str] = None
    ) -> Page[OperationTagLink]: ...

    async def list_tags(self, next_link: Optional[str] = None) -> Page[Tag]: ...

    async def create_or_update_operation(
        self, api_name: str, operation_id: str, body: dict[str, Any]
    ) -> RemoteOperation: ...

    async def delete_operation(self, api_name: str, operation_id: str) -> None: ...

    async def assign_tag(self, api_name: str, operation_id: str, tag_id: str) -> None: ...

    async def detach_tag(self, api_name: str, operation_id: str, tag_id: str) -> None: ...

    async def create_or_update_policy(self, api_name: str, operation_id: str, xml: str) -> None: ...

    async def create_tag(self, tag_id: str, display_name: str) -> Tag: ...

    async def create_revision(
        self, api_id: str, revision: int, source_api_id: str, path: Optional[str], description: str
    ) -> ApiInfo: ...

    async def create_release(self, api_id: str, release_id: str, api_full_id: str, notes: str) -> None: ...


async def collect_all(fetch: Callable[[Optional[str]], Awaitable[Page[T]]]) -> list[T]:
    """Follow continuation links until the last page."""
    items: list[T] = []
    page = await fetch(None)
    items.extend(page.items)
    while page.next_link:
        page = await fetch(page.next_link)
        items.extend(page.items)
    return items
