from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Optional

from routesync.domain.models import EndpointDescriptor, RemoteOperation
from routesync.extractors.patterns import strip_generated_suffixes, trim_slash


@dataclass(frozen=True)
class EditPair:
    old: RemoteOperation
    new: EndpointDescriptor


@dataclass
class ReconciliationPlan:
    to_delete: list[str] = field(default_factory=list)         # remote operation names
    to_create: list[EndpointDescriptor] = field(default_factory=list)
    to_edit: list[EditPair] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.to_delete or self.to_create or self.to_edit)


def match_key(url_template: str, method: str) -> tuple[str, str]:
    return (strip_generated_suffixes(url_template), method.upper())


def operation_name(op: RemoteOperation) -> str:
    # "/subscriptions/.../operations/users-get-2" -> "users-get-2"
    return op.name or op.id.rsplit("/", 1)[-1]


def within_base_path(operations: Iterable[RemoteOperation], base_path: Optional[str]) -> list[RemoteOperation]:
    """Only operations under the synced base path belong to this sync."""
    base = trim_slash(base_path or "")
    if not base:
        return list(operations)
    return [op for op in operations if op.url_template.startswith(f"/{base}")]


def plan(
    old_operations: Iterable[RemoteOperation],
    new_endpoints: Iterable[EndpointDescriptor],
) -> ReconciliationPlan:
    """
    Greedy one-pass match of new endpoints against remote operations.

    For each new endpoint (in order) the first remaining remote operation
    with the same key is claimed for edit; misses are created; whatever is
    left in the pool is deleted.
    """
    pool = list(old_operations)
    result = ReconciliationPlan()

    for new in new_endpoints:
        key = match_key(new.url_template, new.method)
        hit = next(
            (i for i, old in enumerate(pool) if match_key(old.url_template, old.method) == key),
            None,
        )
        if hit is None:
            result.to_create.append(new)
        else:
            result.to_edit.append(EditPair(old=pool.pop(hit), new=new))

    result.to_delete.extend(operation_name(op) for op in pool)
    return result


def needs_metadata_update(old: RemoteOperation, new: EndpointDescriptor) -> bool:
    """True when description, display name, request or responses differ."""
    return (
        (new.description or "") != (old.description or "")
        or (new.display_name or "") != (old.display_name or "")
        or (new.request or {}) != (old.request or {})
        or (new.responses or []) != (old.responses or [])
    )


def tag_delta(old_tags: Iterable[str], new_tags: Iterable[str]) -> tuple[list[str], list[str]]:
    """
    (to_detach, to_assign): old-only and new-only names, in input
    order; names present on both sides are left alone.
    """
    old = list(old_tags)
    new = list(dict.fromkeys(new_tags))
    for name in list(new):
        if name in old:
            old.remove(name)
            new.remove(name)
    return old, new
