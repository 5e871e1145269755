from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal, Optional, Union


@dataclass(frozen=True)
class PathKey:
    name: str
    optional: bool = False
    offset: int = 0


@dataclass(frozen=True)
class PathMatcher:
    """
    Compiled path segment.

    Either a literal (``literal`` set) or a regex source plus its named
    capture keys. ``fast_slash`` marks a mount that matches every path.
    """

    pattern: str = ""
    keys: tuple[PathKey, ...] = ()
    literal: Optional[str] = None
    fast_slash: bool = False

    @classmethod
    def for_literal(cls, path: str) -> "PathMatcher":
        return cls(literal=path)


@dataclass(frozen=True)
class AnnotationToken:
    """Opaque handle returned by an annotation registry."""

    registry_id: int
    index: int


@dataclass(frozen=True)
class AnnotationMarker:
    token: AnnotationToken
    kind: Literal["annotation"] = "annotation"


@dataclass(frozen=True)
class MiddlewareNode:
    name: str = "<anonymous>"
    matcher: PathMatcher = field(default_factory=lambda: PathMatcher(fast_slash=True))
    kind: Literal["middleware"] = "middleware"


@dataclass(frozen=True)
class RouterNode:
    matcher: PathMatcher = field(default_factory=lambda: PathMatcher(fast_slash=True))
    children: tuple["TreeNode", ...] = ()
    kind: Literal["router"] = "router"


# A handler inside a route stack: ordinary logic, an annotation, or a nested router.
RouteHandler = Union[MiddlewareNode, AnnotationMarker, RouterNode]


@dataclass(frozen=True)
class RouteLayer:
    method: Optional[str]
    handler: RouteHandler


@dataclass(frozen=True)
class RouteNode:
    path: str
    matcher: PathMatcher
    stack: tuple[RouteLayer, ...] = ()
    kind: Literal["route"] = "route"

    @property
    def methods(self) -> list[str]:
        # declared methods, first-seen order
        out: list[str] = []
        for layer in self.stack:
            if layer.method and layer.method not in out:
                out.append(layer.method)
        return out


TreeNode = Union[RouterNode, RouteNode, MiddlewareNode, AnnotationMarker]
