"""Express-style route tree builder.

Applications declare their routes with :class:`Router` and hand the result
of :meth:`Router.build` (or the router itself) to the extractor::

    from routesync.annotations.registry import default_registry
    from routesync.routing.builder import Router

    users = Router()
    users.get("/", list_users)
    users.get("/:id", default_registry.register_metadata(description="One user"), get_user)

    router = Router()
    router.use("/users", users)

Paths are compiled the way path-to-regexp 0.1 compiles them, so mounts end up
as regex matchers with ordered keys and routes keep their declared path.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Optional, Union

from routesync.routing.tree import (
    AnnotationMarker,
    AnnotationToken,
    MiddlewareNode,
    PathKey,
    PathMatcher,
    RouteHandler,
    RouteLayer,
    RouteNode,
    RouterNode,
    TreeNode,
)

_PARAM = re.compile(r"(\\/)?(\\\.)?:(\w+)(\(.*?\))?(\*)?(\?)?")
_UNNAMED_GROUP = re.compile(r"\((?!\?)")


def compile_path(path: str, *, end: bool = True, strict: bool = False) -> PathMatcher:
    """
    Compile an express path ("/users/:id", "/files/*", "/:slug(\\w+)?")
    into a case-insensitive regex source plus ordered keys.
    """
    if not end and path in ("", "/"):
        return PathMatcher(pattern=r"^\/?(?=\/|$)", fast_slash=True)

    keys: list[PathKey] = []
    extra_offset = 0

    tail = "" if strict else ("?" if path.endswith("/") else "/?")
    src = "^" + path + tail
    src = src.replace("/(", "/(?:")
    src = re.sub(r"([/.])", r"\\\1", src)

    def _param(m: re.Match) -> str:
        nonlocal extra_offset
        slash, fmt, key, capture, star, optional = m.groups()
        slash = slash or ""
        fmt = fmt or ""
        capture = capture or "([^\\/" + fmt + "]+?)"
        optional = optional or ""

        keys.append(PathKey(name=key, optional=bool(optional), offset=m.start() + extra_offset))

        result = (
            (("" if optional else slash))
            + "(?:"
            + fmt
            + (slash if optional else "")
            + capture
            + ("((?:[\\/" + fmt + "].+?)?)" if star else "")
            + ")"
            + optional
        )
        extra_offset += len(result) - len(m.group(0))
        return result

    src = _PARAM.sub(_param, src)

    def _star(m: re.Match) -> str:
        for i, k in enumerate(keys):
            if k.offset > m.start():
                keys[i] = PathKey(name=k.name, optional=k.optional, offset=k.offset + 3)
        return "(.*)"

    src = re.sub(r"(?<![.\\])\*", _star, src)

    # unnamed groups ("(.*)", "/(foo|bar)") get positional names
    i = 0
    unnamed = 0
    for m in _UNNAMED_GROUP.finditer(src):
        index = m.start()
        escapes = 0
        while index - escapes - 1 >= 0 and src[index - escapes - 1] == "\\":
            escapes += 1
        if escapes % 2 == 1:
            continue
        if i == len(keys) or keys[i].offset > m.start():
            keys.insert(i, PathKey(name=str(unnamed), optional=False, offset=m.start()))
            unnamed += 1
        i += 1

    if end:
        src += "$"
    elif not src.endswith("/"):
        src += r"(?=\/|$)"

    return PathMatcher(pattern=src, keys=tuple(keys))


def _handler_node(handler: Any) -> Union[RouteHandler, "Router"]:
    # routers stay mutable until the enclosing tree is built
    if isinstance(handler, AnnotationToken):
        return AnnotationMarker(token=handler)
    if isinstance(handler, Router):
        return handler
    if isinstance(handler, (RouterNode, MiddlewareNode, AnnotationMarker)):
        return handler
    if callable(handler):
        return MiddlewareNode(name=getattr(handler, "__name__", "<anonymous>"))
    raise TypeError(f"Unsupported route handler: {handler!r}")


class RouteBuilder:
    """Chainable handlers for one path: ``router.route("/x").get(h).post(h2)``."""

    def __init__(self, path: str) -> None:
        self.path = path
        self._stack: list[tuple[str, Union[RouteHandler, Router]]] = []

    def _add(self, method: str, handlers: tuple[Any, ...]) -> "RouteBuilder":
        for h in handlers:
            self._stack.append((method, _handler_node(h)))
        return self

    def get(self, *handlers: Any) -> "RouteBuilder":
        return self._add("GET", handlers)

    def post(self, *handlers: Any) -> "RouteBuilder":
        return self._add("POST", handlers)

    def put(self, *handlers: Any) -> "RouteBuilder":
        return self._add("PUT", handlers)

    def patch(self, *handlers: Any) -> "RouteBuilder":
        return self._add("PATCH", handlers)

    def delete(self, *handlers: Any) -> "RouteBuilder":
        return self._add("DELETE", handlers)

    def options(self, *handlers: Any) -> "RouteBuilder":
        return self._add("OPTIONS", handlers)

    def head(self, *handlers: Any) -> "RouteBuilder":
        return self._add("HEAD", handlers)

    def build(self) -> RouteNode:
        return RouteNode(
            path=self.path,
            matcher=compile_path(self.path, end=True),
            stack=tuple(
                RouteLayer(method=method, handler=h.build() if isinstance(h, Router) else h)
                for method, h in self._stack
            ),
        )


@dataclass(frozen=True)
class _Mount:
    matcher: PathMatcher
    router: "Router"


class Router:
    """
    Mutable route tree under construction. ``build()`` freezes it.

    Mounted routers are held by reference, so routes added to them after
    mounting still show up in the built tree.
    """

    def __init__(self) -> None:
        self._entries: list[Union[TreeNode, RouteBuilder, _Mount]] = []

    def route(self, path: str) -> RouteBuilder:
        rb = RouteBuilder(path)
        self._entries.append(rb)
        return rb

    def get(self, path: str, *handlers: Any) -> "Router":
        self.route(path).get(*handlers)
        return self

    def post(self, path: str, *handlers: Any) -> "Router":
        self.route(path).post(*handlers)
        return self

    def put(self, path: str, *handlers: Any) -> "Router":
        self.route(path).put(*handlers)
        return self

    def patch(self, path: str, *handlers: Any) -> "Router":
        self.route(path).patch(*handlers)
        return self

    def delete(self, path: str, *handlers: Any) -> "Router":
        self.route(path).delete(*handlers)
        return self

    def options(self, path: str, *handlers: Any) -> "Router":
        self.route(path).options(*handlers)
        return self

    def head(self, path: str, *handlers: Any) -> "Router":
        self.route(path).head(*handlers)
        return self

    def use(self, *items: Any) -> "Router":
        """
        Mount routers, attach annotations or register middleware.

        An optional leading string is the mount path; it applies to every
        router and middleware in the call.
        """
        path: Optional[str] = None
        if items and isinstance(items[0], str):
            path, items = items[0], items[1:]
        matcher = compile_path(path or "/", end=False)

        for item in items:
            if isinstance(item, AnnotationToken):
                self._entries.append(AnnotationMarker(token=item))
            elif isinstance(item, AnnotationMarker):
                self._entries.append(item)
            elif isinstance(item, Router):
                self._entries.append(_Mount(matcher=matcher, router=item))
            elif isinstance(item, RouterNode):
                self._entries.append(RouterNode(matcher=matcher, children=item.children))
            elif callable(item):
                self._entries.append(
                    MiddlewareNode(name=getattr(item, "__name__", "<anonymous>"), matcher=matcher)
                )
            else:
                raise TypeError(f"Cannot mount {item!r}")
        return self

    def build(self) -> RouterNode:
        children: list[TreeNode] = []
        for entry in self._entries:
            if isinstance(entry, RouteBuilder):
                children.append(entry.build())
            elif isinstance(entry, _Mount):
                children.append(RouterNode(matcher=entry.matcher, children=entry.router.build().children))
            else:
                children.append(entry)
        return RouterNode(matcher=PathMatcher(fast_slash=True), children=tuple(children))

