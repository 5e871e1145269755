from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from functools import partial
from typing import Optional, Union

import httpx
from loguru import logger

from routesync.annotations.registry import AnnotationRegistry
from routesync.config import Settings, SyncConfig, settings as default_settings
from routesync.domain.models import EndpointDescriptor, RemoteOperation, Tag
from routesync.errors import ApiNotFoundError, RegistryError, SnapshotError
from routesync.extractors.routes import extract_endpoints
from routesync.reconcile.apply import PlanApplier
from routesync.reconcile.coordinator import RevisionTagCoordinator, resolve_api
from routesync.reconcile.executor import JobFailure
from routesync.reconcile.planner import ReconciliationPlan, plan, within_base_path
from routesync.registry.auth import authenticate
from routesync.registry.azure import AzureRegistryClient
from routesync.registry.client import RegistryClient, collect_all
from routesync.routing.builder import Router
from routesync.routing.tree import RouterNode


@dataclass(frozen=True)
class SyncResult:
    api_name: str
    plan: ReconciliationPlan
    created: int = 0
    edited: int = 0
    deleted: int = 0
    failures: tuple[JobFailure, ...] = ()
    revision_created: bool = False
    promoted: bool = False
    dry_run: bool = False

    @property
    def ok(self) -> bool:
        return not self.failures


@dataclass(frozen=True)
class Snapshot:
    operations: list[RemoteOperation] = field(default_factory=list)
    tags: list[Tag] = field(default_factory=list)


async def take_snapshot(client: RegistryClient, api_name: str, base_path: str = "") -> Snapshot:
    """
    Operations (with their tag names) and the service's tags, every page of
    each. Any failure here aborts the sync.
    """
    logger.info("Requesting operations and tags of {}", api_name)
    # every listing runs to completion so no failure is left unretrieved
    results = await asyncio.gather(
        collect_all(partial(client.list_operations, api_name)),
        collect_all(partial(client.list_operation_tags, api_name)),
        collect_all(client.list_tags),
        return_exceptions=True,
    )
    error = next((r for r in results if isinstance(r, BaseException)), None)
    if isinstance(error, (RegistryError, httpx.HTTPError)):
        raise SnapshotError(f"Listing operations/tags of {api_name} failed: {error}") from error
    if error is not None:
        raise error
    operations, links, tags = results

    tags_by_operation: dict[str, list[str]] = {}
    for link in links:
        tags_by_operation.setdefault(link.operation_name, []).append(link.tag_display_name)

    tagged = [
        op.model_copy(update={"tags": tags_by_operation.get(op.name, [])}) for op in operations
    ]
    return Snapshot(operations=within_base_path(tagged, base_path), tags=tags)


async def reconcile(
    client: RegistryClient,
    endpoints: list[EndpointDescriptor],
    api_ref: str,
    api_version: Optional[str] = None,
    config: Optional[SyncConfig] = None,
    dry_run: bool = False,
) -> SyncResult:
    """
    Resolve the API, optionally cut a new revision, snapshot it, plan and
    apply. With ``dry_run`` nothing is written and the plan is returned.
    """
    config = config or SyncConfig()

    target = await resolve_api(client, api_ref, api_version)
    coordinator = RevisionTagCoordinator(client, target)

    revision_created = False
    if config.generate_new_revision and not dry_run:
        await coordinator.create_revision()
        revision_created = True

    snap = await take_snapshot(client, coordinator.api_name, config.base_path)
    coordinator.tags = list(snap.tags)

    the_plan = plan(snap.operations, endpoints)
    logger.info(
        "Plan for {}: {} to create, {} to edit, {} to delete",
        coordinator.api_name,
        len(the_plan.to_create),
        len(the_plan.to_edit),
        len(the_plan.to_delete),
    )
    if dry_run:
        return SyncResult(api_name=coordinator.api_name, plan=the_plan, dry_run=True)

    applier = PlanApplier(
        client,
        coordinator,
        max_parallel_operations=config.max_parallel_operations,
        max_parallel_tags=config.max_parallel_tags,
    )
    report = await applier.apply(the_plan)

    promoted = False
    if config.promote_revision:
        await coordinator.promote_revision()
        promoted = True

    return SyncResult(
        api_name=coordinator.api_name,
        plan=the_plan,
        created=report.created,
        edited=report.edited,
        deleted=report.deleted,
        failures=tuple(report.failures),
        revision_created=revision_created,
        promoted=promoted,
    )


async def sync(
    tree: Union[Router, RouterNode],
    settings: Optional[Settings] = None,
    client: Optional[RegistryClient] = None,
    registry: Optional[AnnotationRegistry] = None,
    config: Optional[SyncConfig] = None,
    dry_run: bool = False,
) -> SyncResult:
    """
    Extract the tree and mirror it into the configured API.

    Extraction runs first so a strict-mode duplicate fails before any
    remote call. A client built here from ``settings`` is closed on exit.
    """
    s = settings or default_settings
    config = config or SyncConfig.from_settings(s)
    logger.info("Sync started")

    endpoints = extract_endpoints(
        tree,
        base_path=config.base_path,
        registry=registry,
        break_on_same_path=config.break_on_same_path,
    )

    if not s.API_ID:
        raise ApiNotFoundError("(not configured)")

    owned: Optional[AzureRegistryClient] = None
    if client is None:
        owned = client = authenticate(s)
    try:
        result = await reconcile(
            client, endpoints, s.API_ID, s.API_VERSION, config=config, dry_run=dry_run
        )
    finally:
        if owned is not None:
            await owned.aclose()

    if result.ok:
        logger.info("Sync finished")
    else:
        logger.warning("Sync finished with {} failed items", len(result.failures))
    return result
