from __future__ import annotations

import xml.etree.ElementTree as ET
from typing import Any, Mapping, Optional, Sequence

from routesync.annotations.registry import AnnotationRegistry, default_registry
from routesync.domain.models import POLICY_LOCATIONS, PolicyLocation
from routesync.routing.tree import AnnotationToken


def _attrs(values: Mapping[str, Any]) -> dict[str, str]:
    out: dict[str, str] = {}
    for k, v in values.items():
        if v is None:
            continue
        if isinstance(v, bool):
            v = "True" if v else "False"
        out[k] = str(v)
    return out


def _to_xml(elem: ET.Element) -> str:
    ET.indent(elem)
    return ET.tostring(elem, encoding="unicode")


def check_header(
    header_name: str,
    failed_check_httpcode: int,
    failed_check_error_message: str,
    ignore_case: bool = False,
    values: Sequence[str] = (),
    location: PolicyLocation = "inbound",
    registry: Optional[AnnotationRegistry] = None,
) -> AnnotationToken:
    """
    ``check-header`` access restriction. Passes if the header exists and,
    when ``values`` are given, matches any one of them.
    """
    if location not in ("inbound", "outbound"):
        raise ValueError("check-header is only valid in inbound or outbound")

    root = ET.Element(
        "check-header",
        _attrs(
            {
                "name": header_name,
                "failed-check-httpcode": failed_check_httpcode,
                "failed-check-error-message": failed_check_error_message,
                "ignore-case": bool(ignore_case),
            }
        ),
    )
    for v in values:
        ET.SubElement(root, "value").text = v

    return (registry if registry is not None else default_registry).register_policy(_to_xml(root), location)


def rate_limit(
    calls: int,
    renewal_period: int,
    apis: Sequence[Mapping[str, Any]] = (),
    registry: Optional[AnnotationRegistry] = None,
) -> AnnotationToken:
    """
    ``rate-limit`` policy (inbound). ``apis`` entries take ``name``/``id``,
    ``calls``, ``renewal-period`` and an optional ``operations`` list of the
    same shape.
    """
    root = ET.Element("rate-limit", _attrs({"calls": calls, "renewal-period": renewal_period}))
    for api in apis:
        api_attrs = {k: v for k, v in api.items() if k != "operations"}
        api_elem = ET.SubElement(root, "api", _attrs(api_attrs))
        for op in api.get("operations", ()):
            ET.SubElement(api_elem, "operation", _attrs(op))

    return (registry if registry is not None else default_registry).register_policy(_to_xml(root), "inbound")


def rate_limit_by_key(
    calls: int,
    renewal_period: int,
    counter_key: str,
    increment_condition: Optional[str] = None,
    registry: Optional[AnnotationRegistry] = None,
) -> AnnotationToken:
    """``rate-limit-by-key`` policy (inbound); ``counter_key`` is a policy expression."""
    root = ET.Element(
        "rate-limit-by-key",
        _attrs(
            {
                "calls": calls,
                "renewal-period": renewal_period,
                "counter-key": counter_key,
                "increment-condition": increment_condition,
            }
        ),
    )
    return (registry if registry is not None else default_registry).register_policy(_to_xml(root), "inbound")


def policies_to_xml(policies: Mapping[str, Sequence[str]]) -> str:
    """Full policy document; every section keeps a <base /> after its fragments."""
    lines = ["<policies>"]
    for location in POLICY_LOCATIONS:
        lines.append(f"  <{location}>")
        for fragment in policies.get(location, ()):
            for line in fragment.strip().splitlines():
                lines.append(f"    {line}")
        lines.append("    <base />")
        lines.append(f"  </{location}>")
    lines.append("</policies>")
    return "\n".join(lines)
