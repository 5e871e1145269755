from __future__ import annotations

import asyncio
import re
import time
from dataclasses import dataclass, replace
from typing import Iterable, Optional

import httpx
from loguru import logger

from routesync.domain.models import ApiInfo, Tag
from routesync.errors import ApiNotFoundError, ApiResolutionError, RegistryError, RevisionError
from routesync.registry.client import RegistryClient, collect_all

SYSTEM_TAG = "routesync"
REVISION_NOTES = "Auto-created revision by routesync"

_NON_ALNUM = re.compile(r"[^A-Za-z0-9]")
_REV_SEP = ";rev="


@dataclass(frozen=True)
class ApiTarget:
    api_id: str                 # without ";rev="
    full_id: str                # resource id, used as revision source / release target
    revision: int
    path: Optional[str] = None

    @property
    def api_name(self) -> str:
        return f"{self.api_id}{_REV_SEP}{self.revision}"


def parse_api_ref(ref: str) -> tuple[str, Optional[int]]:
    """"orders;rev=3" -> ("orders", 3), "orders" -> ("orders", None)."""
    api_id, _, rev = ref.partition(_REV_SEP)
    return api_id, (int(rev) if rev else None)


def _revision_number(value: Optional[str], default: int = 1) -> int:
    try:
        return int(value) if value else default
    except ValueError:
        return default


async def resolve_api(client: RegistryClient, ref: str, api_version: Optional[str] = None) -> ApiTarget:
    """
    Find the API to sync: by version and id/display name/path when a version
    is given, then by name, then by display name or path.
    """
    api_id, pinned = parse_api_ref(ref)

    logger.info("Requesting APIs from the registry")
    try:
        apis = await collect_all(client.list_apis)
    except (RegistryError, httpx.HTTPError) as e:
        raise ApiResolutionError(f"Listing APIs failed: {e}") from e

    def _target(api: ApiInfo) -> ApiTarget:
        base_full_id = api.id.split(_REV_SEP)[0]
        return ApiTarget(
            api_id=api.name.split(_REV_SEP)[0],
            full_id=f"{base_full_id}{_REV_SEP}{pinned}" if pinned else api.id,
            revision=pinned or _revision_number(api.api_revision),
            path=api.path,
        )

    if api_version:
        for api in apis:
            if api.api_version == api_version and api_id in (api.display_name, api.path, api.name):
                return _target(api)

    for api in apis:
        if api.name == api_id:
            return _target(api)

    for api in apis:
        if api_id in (api.display_name, api.path):
            return _target(api)

    raise ApiNotFoundError(ref, api_version)


class RevisionTagCoordinator:
    """
    Owns the API target (and its revision) and the tag cache for one sync.

    Concurrent ``ensure_tag`` calls for the same name share one creation
    task; the task is dropped from ``_pending`` once it finishes.
    """

    def __init__(self, client: RegistryClient, target: ApiTarget, tags: Iterable[Tag] = ()) -> None:
        self.client = client
        self.target = target
        self.tags: list[Tag] = list(tags)
        self._pending: dict[str, asyncio.Task[Tag]] = {}

    @property
    def api_name(self) -> str:
        return self.target.api_name

    # ----------------------------
    # Revisions
    # ----------------------------

    async def create_revision(self) -> int:
        try:
            logger.info("Requesting revisions of {}", self.target.api_id)
            revisions = await collect_all(
                lambda nxt: self.client.list_revisions(self.target.api_id, nxt)
            )
            last = max((_revision_number(r.api_revision, 0) for r in revisions), default=0)

            logger.info("Creating revision {} of {}", last + 1, self.target.api_id)
            api = await self.client.create_revision(
                self.target.api_id,
                last + 1,
                source_api_id=self.target.full_id,
                path=self.target.path,
                description=REVISION_NOTES,
            )
        except (RegistryError, httpx.HTTPError) as e:
            raise RevisionError(f"Creating a revision of {self.target.api_id} failed: {e}") from e

        self.target = replace(
            self.target,
            api_id=api.name.split(_REV_SEP)[0],
            full_id=api.id,
            revision=_revision_number(api.api_revision, last + 1),
        )
        return self.target.revision

    async def promote_revision(self) -> None:
        release_id = f"{SYSTEM_TAG}{self.target.revision}release"
        logger.info("Setting revision {} as current", self.target.revision)
        try:
            await self.client.create_release(
                self.target.api_id, release_id, self.target.full_id, REVISION_NOTES
            )
        except (RegistryError, httpx.HTTPError) as e:
            raise RevisionError(f"Promoting revision {self.target.revision} failed: {e}") from e

    # ----------------------------
    # Tags
    # ----------------------------

    def find_tag(self, display_name: str) -> Optional[Tag]:
        name = display_name.strip()
        return next((t for t in self.tags if t.display_name == name), None)

    async def ensure_tag(self, display_name: str) -> Optional[Tag]:
        """Cached tag, or the (shared) result of creating it. None for unusable names."""
        if not _NON_ALNUM.sub("", display_name):
            return None
        name = display_name.strip()

        found = self.find_tag(name)
        if found is not None:
            return found

        task = self._pending.get(name)
        if task is None:
            logger.info("Creating tag {}", name)
            task = asyncio.ensure_future(self._create_tag(name))
            self._pending[name] = task
        return await asyncio.shield(task)

    async def _create_tag(self, name: str) -> Tag:
        try:
            tag_id = f"{_NON_ALNUM.sub('', name)}{int(time.time() * 1000)}"
            tag = await self.client.create_tag(tag_id, name)
            self.tags.append(tag)
            return tag
        finally:
            self._pending.pop(name, None)

    async def assign_tag(self, operation_id: str, display_name: str) -> None:
        tag = await self.ensure_tag(display_name)
        if tag is None:
            return
        logger.info("Assigning tag {} to {}", display_name, operation_id)
        await self.client.assign_tag(self.api_name, operation_id, tag.name)

    async def detach_tag(self, operation_id: str, display_name: str) -> None:
        tag = self.find_tag(display_name)
        if tag is None:
            return
        logger.info("Detaching tag {} from {}", display_name, operation_id)
        await self.client.detach_tag(self.api_name, operation_id, tag.name)
