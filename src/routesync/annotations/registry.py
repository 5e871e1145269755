"""Endpoint annotations: metadata overrides and policy fragments.

Route-tree authors register an annotation and place the returned token in a
handler chain (or ``router.use(token)`` for everything that follows). The
extractor looks tokens up in the registry it was given.
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass
from typing import Any, Iterable, Optional, Union

from routesync.domain.models import (
    POLICY_LOCATIONS,
    EndpointOverrides,
    PolicyLocation,
)
from routesync.routing.tree import AnnotationToken

_registry_ids = itertools.count(1)


@dataclass(frozen=True)
class MetadataAnnotation:
    overrides: EndpointOverrides


@dataclass(frozen=True)
class PolicyAnnotation:
    xml: str
    location: PolicyLocation


Annotation = Union[MetadataAnnotation, PolicyAnnotation]


class AnnotationRegistry:
    """Append-only store of annotations, addressed by the tokens it hands out."""

    def __init__(self) -> None:
        self.registry_id = next(_registry_ids)
        self._entries: list[Annotation] = []

    def __len__(self) -> int:
        return len(self._entries)

    def _add(self, annotation: Annotation) -> AnnotationToken:
        self._entries.append(annotation)
        return AnnotationToken(registry_id=self.registry_id, index=len(self._entries) - 1)

    def register_metadata(
        self,
        overrides: Optional[EndpointOverrides] = None,
        **fields: Any,
    ) -> AnnotationToken:
        """
        Register a partial descriptor. Either pass an ``EndpointOverrides`` or
        its fields as keywords (``display_name=..., tags=[...]``).
        """
        if overrides is None:
            overrides = EndpointOverrides(**fields)
        elif fields:
            raise TypeError("Pass either an EndpointOverrides or keyword fields, not both")
        if overrides.policies:
            raise ValueError("Policies are registered with register_policy()")
        return self._add(MetadataAnnotation(overrides=overrides))

    def register_policy(self, xml: str, location: PolicyLocation = "inbound") -> AnnotationToken:
        if location not in POLICY_LOCATIONS:
            raise ValueError(f"Unknown policy location: {location!r}")
        return self._add(PolicyAnnotation(xml=xml, location=location))

    def lookup(self, token: AnnotationToken) -> Optional[Annotation]:
        if token.registry_id != self.registry_id:
            return None
        if 0 <= token.index < len(self._entries):
            return self._entries[token.index]
        return None

    @staticmethod
    def merge_all(annotations: Iterable[Annotation]) -> EndpointOverrides:
        """
        Fold annotations in order: metadata fields overwrite (later wins),
        policy fragments accumulate per location.
        """
        fields: dict[str, Any] = {}
        policies: dict[str, list[str]] = {}

        for a in annotations:
            if isinstance(a, MetadataAnnotation):
                fields.update(a.overrides.model_dump(exclude_unset=True, exclude={"policies"}))
            elif isinstance(a, PolicyAnnotation):
                policies.setdefault(a.location, []).append(a.xml)

        return EndpointOverrides(**fields, policies=policies)


# Shared instance for trees declared at import time.
default_registry = AnnotationRegistry()
