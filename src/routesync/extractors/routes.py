from __future__ import annotations

import itertools
import re
from typing import Iterator, Optional, Union

from loguru import logger

from routesync.annotations.registry import Annotation, AnnotationRegistry, default_registry
from routesync.domain.models import POLICY_LOCATIONS, EndpointDescriptor, EndpointOverrides
from routesync.errors import DuplicateEndpointError
from routesync.extractors.patterns import (
    decode_matcher,
    merge_path,
    strip_generated_suffixes,
    to_url_template,
    trim_slash,
)
from routesync.routing.builder import Router
from routesync.routing.tree import (
    AnnotationMarker,
    MiddlewareNode,
    RouteNode,
    RouterNode,
    TreeNode,
)

EndpointKey = tuple[str, str]  # (url template without generated suffixes, METHOD)

_SLUG_UNSAFE = re.compile(r"[^a-z0-9\-]")
_NAME_UNSAFE = re.compile(r"[^A-Za-z0-9 ]")


class RouteExtractor:
    """
    Walk a route tree and collect one EndpointDescriptor per url template and
    method. Paths that differ only in capture patterns or modifiers
    ("/users/:id" and "/users/:id(\\d+)") land on the same template.

    The counter used for operation ids and parameter suffixes is reset on
    every ``extract()`` call, so ids are only stable within a run.
    """

    def __init__(
        self,
        tree: Union[Router, RouterNode],
        base_path: str = "",
        registry: Optional[AnnotationRegistry] = None,
        break_on_same_path: bool = False,
    ) -> None:
        self.tree = tree.build() if isinstance(tree, Router) else tree
        self.base_path = trim_slash(base_path or "")
        self.registry = registry if registry is not None else default_registry
        self.break_on_same_path = break_on_same_path

        self._counter: Iterator[int] = itertools.count(1)
        self._endpoints: dict[EndpointKey, EndpointDescriptor] = {}

    def extract(self) -> dict[EndpointKey, EndpointDescriptor]:
        self._counter = itertools.count(1)
        self._endpoints = {}
        self._walk(self.tree.children, self.base_path, [])
        return self._endpoints

    # ----------------------------
    # Tree walk
    # ----------------------------

    def _walk(self, children: tuple[TreeNode, ...], base: str, inherited: list[Annotation]) -> None:
        # annotations apply to the siblings that follow them
        annotations = list(inherited)

        for node in children:
            if isinstance(node, AnnotationMarker):
                found = self._lookup(node)
                if found is not None:
                    annotations = [*annotations, found]
                continue

            if isinstance(node, MiddlewareNode):
                continue

            if isinstance(node, RouteNode):
                if self._is_simple_route(node):
                    self._add_route(node, base, annotations)
                else:
                    self._walk_route_stack(node, merge_path(base, node.path), annotations)
                continue

            if isinstance(node, RouterNode):
                self._walk(node.children, merge_path(base, decode_matcher(node.matcher)), annotations)

    def _walk_route_stack(self, route: RouteNode, base: str, inherited: list[Annotation]) -> None:
        annotations = list(inherited)
        for layer in route.stack:
            handler = layer.handler
            if isinstance(handler, AnnotationMarker):
                found = self._lookup(handler)
                if found is not None:
                    annotations = [*annotations, found]
            elif isinstance(handler, RouterNode):
                self._walk(handler.children, merge_path(base, decode_matcher(handler.matcher)), annotations)

    @staticmethod
    def _is_simple_route(route: RouteNode) -> bool:
        if not route.stack:
            return False
        for layer in route.stack:
            if not layer.method:
                return False
            if isinstance(layer.handler, RouterNode) and layer.handler.children:
                return False
        return True

    def _lookup(self, marker: AnnotationMarker) -> Optional[Annotation]:
        found = self.registry.lookup(marker.token)
        if found is None:
            logger.warning("Annotation token {} is not in the registry; ignored", marker.token)
        return found

    def _add_route(self, route: RouteNode, base: str, inherited: list[Annotation]) -> None:
        path = "/" + merge_path(base, route.path)

        for method in route.methods:
            annotations = list(inherited)
            for layer in route.stack:
                if layer.method == method and isinstance(layer.handler, AnnotationMarker):
                    found = self._lookup(layer.handler)
                    if found is not None:
                        annotations.append(found)
            self._add_endpoint(path, method, AnnotationRegistry.merge_all(annotations))

    # ----------------------------
    # Endpoint assembly
    # ----------------------------

    def _add_endpoint(self, path: str, method: str, overrides: EndpointOverrides) -> None:
        url_template, params = to_url_template(path, self._counter)
        key = (strip_generated_suffixes(url_template), method)
        existing = self._endpoints.get(key)
        if existing is not None and self.break_on_same_path:
            raise DuplicateEndpointError(key[0], method)

        fields = {
            "operation_id": self._operation_id(path, method),
            "display_name": self._display_name(path, method),
            "method": method,
            "url_template": url_template,
            "template_parameters": params,
        }
        if existing is not None:
            fields.update(existing.model_dump(exclude={"policies"}))
        fields.update(overrides.model_dump(exclude_unset=True, exclude={"policies"}))

        policies: dict[str, list[str]] = {}
        for location in POLICY_LOCATIONS:
            merged = [
                *(existing.policies.get(location, []) if existing is not None else []),
                *overrides.policies.get(location, []),
            ]
            if merged:
                policies[location] = merged

        self._endpoints[key] = EndpointDescriptor(**fields, policies=policies)

    def _operation_id(self, path: str, method: str) -> str:
        # GET /users/:id -> users-id-get-3
        slug = trim_slash(path).strip().lower().replace("/", "-")
        slug = _SLUG_UNSAFE.sub("", slug)[:30].strip("-") or "root"
        return f"{slug}-{method.lower()}-{next(self._counter)}"

    @staticmethod
    def _display_name(path: str, method: str) -> str:
        # GET /user-groups/:id -> "Get User Groups Id"
        words = _NAME_UNSAFE.sub("", re.sub(r"[/\-]", " ", trim_slash(path)))
        title = " ".join(w.capitalize() for w in words.split(" ") if w)
        return f"{method.capitalize()} {title[:30].strip() or 'Root'}"


def extract_endpoints(
    tree: Union[Router, RouterNode],
    base_path: str = "",
    registry: Optional[AnnotationRegistry] = None,
    break_on_same_path: bool = False,
) -> list[EndpointDescriptor]:
    """Flat list of descriptors in discovery order."""
    extractor = RouteExtractor(tree, base_path, registry=registry, break_on_same_path=break_on_same_path)
    endpoints = list(extractor.extract().values())
    logger.info("Extracted {} endpoints", len(endpoints))
    return endpoints
