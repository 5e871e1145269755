import pytest

from routesync.annotations.registry import (
    AnnotationRegistry,
    MetadataAnnotation,
    PolicyAnnotation,
)
from routesync.domain.models import EndpointOverrides


def test_tokens_are_looked_up_in_their_own_registry():
    a = AnnotationRegistry()
    b = AnnotationRegistry()
    token = a.register_metadata(description="hello")

    found = a.lookup(token)
    assert isinstance(found, MetadataAnnotation)
    assert found.overrides.description == "hello"
    assert b.lookup(token) is None
    assert len(a) == 1
    assert len(b) == 0


def test_register_metadata_accepts_overrides_object():
    registry = AnnotationRegistry()
    token = registry.register_metadata(EndpointOverrides(tags=["t"]))
    assert registry.lookup(token).overrides.tags == ["t"]

    with pytest.raises(TypeError):
        registry.register_metadata(EndpointOverrides(tags=["t"]), description="both")


def test_register_metadata_rejects_policies():
    with pytest.raises(ValueError):
        AnnotationRegistry().register_metadata(policies={"inbound": ["<x />"]})


def test_register_policy_checks_location():
    registry = AnnotationRegistry()
    token = registry.register_policy("<x />", "on-error")
    assert registry.lookup(token) == PolicyAnnotation(xml="<x />", location="on-error")

    with pytest.raises(ValueError):
        registry.register_policy("<x />", "nowhere")


def test_merge_all_only_applies_set_fields():
    merged = AnnotationRegistry.merge_all(
        [
            MetadataAnnotation(EndpointOverrides(display_name="A", description="first")),
            PolicyAnnotation(xml="<p1 />", location="inbound"),
            MetadataAnnotation(EndpointOverrides(display_name="B")),
            PolicyAnnotation(xml="<p2 />", location="inbound"),
        ]
    )
    assert merged.display_name == "B"
    assert merged.description == "first"
    assert merged.policies == {"inbound": ["<p1 />", "<p2 />"]}
    assert "tags" not in merged.model_fields_set


def test_merge_all_of_nothing_is_empty():
    merged = AnnotationRegistry.merge_all([])
    assert merged.model_dump(exclude_unset=True, exclude={"policies"}) == {}
    assert merged.policies == {}
