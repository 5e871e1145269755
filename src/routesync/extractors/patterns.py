from __future__ import annotations

import re
from typing import Iterator

from routesync.domain.models import TemplateParameter
from routesync.routing.tree import PathMatcher

# (?:\/(...))? or (?:(...)) as emitted by compile_path, plus bare "(.*)" wildcards
_CAPTURE = re.compile(r"\(\?:(\\/|)\(.*?\)\)\??|\(\.\*\)")
# anchors, trailing-slash tails and inline case flags
_REMOVAL = re.compile(r"^\^|\(\?i\)|\\/\?\$|\\/\?\(\?=\\/\|\$\)|\(\?=\\/\|\$\)|\$$")
_ESCAPED = re.compile(r"\\([/.])")
_MATCH_ALL = {"", "^", "^\\/?", "^\\/?(?=\\/|$)", ".*", "^.*$", "(.*)", "^(.*)$"}

# any of these in a segment part means it came from a param or a regex
_PARAM_SYNTAX = re.compile(r"[:?+*()|]")
_CAPTURE_BODY = re.compile(r"\(.*?\)")
_GENERATED_SUFFIX = re.compile(r"\{(.*?)(?:P\d*)?\}")


def trim_slash(path: str) -> str:
    p = path.strip()
    if p.startswith("/"):
        p = p[1:]
    if p.endswith("/"):
        p = p[:-1]
    return p


def merge_path(*paths: str) -> str:
    """Join path pieces with single slashes, dropping empty pieces."""
    return "/".join(t for t in (trim_slash(p) for p in paths) if t)


def decode_matcher(matcher: PathMatcher) -> str:
    """
    Turn a compiled matcher back into an express-style path ("users/:id").

    Keys are consumed in offset order, one per capture group, left to right.
    """
    if matcher.literal is not None:
        return trim_slash(matcher.literal)
    if matcher.fast_slash or matcher.pattern.strip() in _MATCH_ALL:
        return ""

    keys = sorted(matcher.keys, key=lambda k: k.offset)
    used = iter(keys)

    def _named(m: re.Match) -> str:
        key = next(used, None)
        if key is None:
            raise ValueError(f"Pattern {matcher.pattern!r} has more capture groups than keys")
        prefix = m.group(1) or ""
        return f"{prefix}:{key.name}"

    path = _CAPTURE.sub(_named, matcher.pattern)
    path = _REMOVAL.sub("", path)
    path = _ESCAPED.sub(r"\1", path)
    return trim_slash(path)


def to_url_template(path: str, counter: Iterator[int]) -> tuple[str, list[TemplateParameter]]:
    """
    "/users/:id" -> ("/users/{idP1}", [TemplateParameter(name="idP1")])

    Names of two characters or fewer, and names already used in the same
    path, get a "P<n>" suffix from the run counter.
    """
    params: list[TemplateParameter] = []

    def _part(part: str) -> str:
        if not _PARAM_SYNTAX.search(part):
            return part
        name = _PARAM_SYNTAX.sub("", _CAPTURE_BODY.sub("", part))
        if len(name) <= 2 or any(p.name == name for p in params):
            name = f"{name}P{next(counter)}"
        params.append(TemplateParameter(name=name, required=True, type="string"))
        return "{" + name + "}"

    segments = []
    for seg in path.split("/"):
        dashed = []
        for sub in seg.split("-"):
            dashed.append(".".join(_part(p) for p in sub.split(".")))
        segments.append("-".join(dashed))
    return "/".join(segments), params


def strip_generated_suffixes(url_template: str) -> str:
    """"/users/{idP12}" -> "/users/{id}"."""
    return _GENERATED_SUFFIX.sub(r"{\1}", url_template)
