from __future__ import annotations

from dataclasses import dataclass, field
from functools import partial
from typing import Any, Sequence

from loguru import logger

from routesync.annotations.policies import policies_to_xml
from routesync.domain.models import EndpointDescriptor, RemoteOperation
from routesync.errors import RegistryError
from routesync.reconcile.coordinator import SYSTEM_TAG, RevisionTagCoordinator
from routesync.reconcile.executor import JobFailure, is_failure, run_bounded
from routesync.reconcile.planner import (
    ReconciliationPlan,
    needs_metadata_update,
    operation_name,
    tag_delta,
)
from routesync.registry.client import RegistryClient


@dataclass
class ApplyReport:
    deleted: int = 0
    created: int = 0
    edited: int = 0
    failures: list[JobFailure] = field(default_factory=list)

    def _count(self, outcomes: Sequence[Any]) -> int:
        failed = [o for o in outcomes if is_failure(o)]
        self.failures.extend(failed)
        return len(outcomes) - len(failed)


def _raise_on_failures(outcomes: Sequence[Any], what: str) -> None:
    failed = [o for o in outcomes if is_failure(o)]
    if failed:
        raise RegistryError(f"{len(failed)} of {len(outcomes)} tag/policy calls failed for {what}")


class PlanApplier:
    """
    Executes a ReconciliationPlan: deletes, then creates, then edits, each
    batch in ``max_parallel_operations`` lanes. Tag and policy calls for one
    operation run in ``max_parallel_tags`` lanes.
    """

    def __init__(
        self,
        client: RegistryClient,
        coordinator: RevisionTagCoordinator,
        max_parallel_operations: int = 5,
        max_parallel_tags: int = 2,
    ) -> None:
        self.client = client
        self.coordinator = coordinator
        self.max_parallel_operations = max_parallel_operations
        self.max_parallel_tags = max_parallel_tags

    @property
    def api_name(self) -> str:
        return self.coordinator.api_name

    async def apply(self, plan: ReconciliationPlan) -> ApplyReport:
        report = ApplyReport()

        logger.info("Deleting {} operations", len(plan.to_delete))
        outcomes = await run_bounded(
            [partial(self.delete_operation, name) for name in plan.to_delete],
            self.max_parallel_operations,
            labels=[f"delete {name}" for name in plan.to_delete],
        )
        report.deleted = report._count(outcomes)

        logger.info("Creating {} operations", len(plan.to_create))
        outcomes = await run_bounded(
            [partial(self.create_operation, ep) for ep in plan.to_create],
            self.max_parallel_operations,
            labels=[f"create {ep.operation_id}" for ep in plan.to_create],
        )
        report.created = report._count(outcomes)

        logger.info("Editing {} operations", len(plan.to_edit))
        outcomes = await run_bounded(
            [partial(self.edit_operation, pair.old, pair.new) for pair in plan.to_edit],
            self.max_parallel_operations,
            labels=[f"edit {operation_name(pair.old)}" for pair in plan.to_edit],
        )
        report.edited = report._count(outcomes)

        if report.failures:
            logger.warning("{} plan items failed", len(report.failures))
        return report

    async def delete_operation(self, operation_id: str) -> None:
        logger.info("Deleting {}", operation_id)
        await self.client.delete_operation(self.api_name, operation_id)

    async def create_operation(self, endpoint: EndpointDescriptor) -> None:
        logger.info("Creating {}", endpoint.display_name)
        created = await self.client.create_or_update_operation(
            self.api_name, endpoint.operation_id, endpoint.operation_body()
        )
        op_id = created.name or endpoint.operation_id
        tags = [*endpoint.tags, SYSTEM_TAG]

        outcomes = await run_bounded(
            [
                *(partial(self.coordinator.assign_tag, op_id, t) for t in tags),
                partial(self.set_policy, op_id, endpoint),
            ],
            self.max_parallel_tags,
        )
        _raise_on_failures(outcomes, op_id)

    async def edit_operation(self, old: RemoteOperation, new: EndpointDescriptor) -> None:
        op_id = operation_name(old)
        logger.info("Editing {}", new.display_name)

        if needs_metadata_update(old, new):
            logger.info("Modifying {}'s metadata", new.display_name)
            await self.client.create_or_update_operation(self.api_name, op_id, new.operation_body())

        to_detach, to_assign = tag_delta(old.tags, [*new.tags, SYSTEM_TAG])

        # policies are written every time; reading them back costs a call per operation
        outcomes = await run_bounded(
            [
                *(partial(self.coordinator.detach_tag, op_id, t) for t in to_detach),
                *(partial(self.coordinator.assign_tag, op_id, t) for t in to_assign),
                partial(self.set_policy, op_id, new),
            ],
            self.max_parallel_tags,
        )
        _raise_on_failures(outcomes, op_id)

    async def set_policy(self, operation_id: str, endpoint: EndpointDescriptor) -> None:
        logger.info("Setting policy on {}", operation_id)
        await self.client.create_or_update_policy(
            self.api_name, operation_id, policies_to_xml(endpoint.policies)
        )
