import asyncio

import pytest

from conftest import FakeRegistry
from routesync.annotations.registry import AnnotationRegistry
from routesync.config import Settings, SyncConfig
from routesync.errors import ApiNotFoundError, DuplicateEndpointError, SnapshotError
from routesync.extractors.routes import extract_endpoints
from routesync.orchestrator.pipeline import reconcile, sync, take_snapshot
from routesync.reconcile.coordinator import SYSTEM_TAG
from routesync.routing.builder import Router

NO_REVISION = SyncConfig(generate_new_revision=False)
WRITES = {
    "create_or_update_operation",
    "delete_operation",
    "assign_tag",
    "detach_tag",
    "create_or_update_policy",
    "create_tag",
    "create_revision",
    "create_release",
}


def h(*args):
    return None


def settings_for(**fields):
    return Settings(_env_file=None, API_ID="orders", **fields)


def three_routes(registry):
    r = Router()
    r.get("/", h)
    r.get("/about", h)
    r.post("/users", registry.register_policy('<set-header name="x-src" exists-action="override" />'), h)
    return r


def test_creates_every_endpoint_in_a_new_revision(fake_registry):
    registry = AnnotationRegistry()

    result = asyncio.run(sync(three_routes(registry), settings=settings_for(), client=fake_registry,
                              registry=registry))

    assert result.ok
    assert (result.created, result.edited, result.deleted) == (3, 0, 0)
    assert result.revision_created
    assert result.promoted
    assert result.api_name == "orders;rev=2"

    ops = fake_registry.operations["orders;rev=2"]
    assert sorted(op.url_template for op in ops.values()) == ["/", "/about", "/users"]
    for name in ops:
        assert fake_registry.tag_names_of("orders;rev=2", name) == [SYSTEM_TAG]
        assert ("orders;rev=2", name) in fake_registry.policies

    users = next(name for name, op in ops.items() if op.url_template == "/users")
    assert 'name="x-src"' in fake_registry.policies[("orders;rev=2", users)]

    # one system tag, however many operations asked for it
    assert len(fake_registry.called("create_tag")) == 1
    assert fake_registry.releases == [("orders", f"{SYSTEM_TAG}2release", "/apis/orders;rev=2")]


def test_edit_detaches_old_tags_and_assigns_new(fake_registry):
    fake_registry.add_operation(
        "orders;rev=1", "users-get", "/users", "GET", tags=("old", SYSTEM_TAG), display_name="Get Users"
    )
    registry = AnnotationRegistry()
    r = Router()
    r.get("/users", registry.register_metadata(tags=["new"]), h)

    result = asyncio.run(sync(r, settings=settings_for(), client=fake_registry, registry=registry,
                              config=NO_REVISION))

    assert (result.created, result.edited, result.deleted) == (0, 1, 0)
    assert not result.promoted
    assert set(fake_registry.tag_names_of("orders;rev=1", "users-get")) == {SYSTEM_TAG, "new"}
    assert [args[1] for args in fake_registry.called("detach_tag")] == ["users-get"]
    # display name and description are unchanged, so the operation itself is not rewritten
    assert fake_registry.called("create_or_update_operation") == []
    assert fake_registry.called("create_or_update_policy")


def test_edit_rewrites_changed_metadata(fake_registry):
    fake_registry.add_operation("orders;rev=1", "users-get", "/users", "GET", display_name="Old name")
    r = Router()
    r.get("/users", h)

    asyncio.run(sync(r, settings=settings_for(), client=fake_registry, config=NO_REVISION))

    (call,) = fake_registry.called("create_or_update_operation")
    assert call[1] == "users-get"
    assert fake_registry.operations["orders;rev=1"]["users-get"].display_name == "Get Users"


def test_removed_routes_are_deleted(fake_registry):
    fake_registry.add_operation("orders;rev=1", "legacy-get", "/legacy", "GET")
    r = Router()
    r.get("/users", h)

    result = asyncio.run(sync(r, settings=settings_for(), client=fake_registry, config=NO_REVISION))

    assert (result.created, result.edited, result.deleted) == (1, 0, 1)
    assert "legacy-get" not in fake_registry.operations["orders;rev=1"]


def test_operations_outside_base_path_are_left_alone(fake_registry):
    fake_registry.add_operation("orders;rev=1", "other-get", "/other", "GET")
    r = Router()
    r.get("/users", h)

    result = asyncio.run(
        sync(r, settings=settings_for(), client=fake_registry, config=SyncConfig(base_path="/api",
                                                                                  generate_new_revision=False))
    )

    assert result.deleted == 0
    assert "other-get" in fake_registry.operations["orders;rev=1"]
    assert [op.url_template for op in fake_registry.operations["orders;rev=1"].values()] == [
        "/other",
        "/api/users",
    ]


def test_every_snapshot_page_is_read():
    client = FakeRegistry(page_size=1)
    client.add_api()
    for path in ("/a", "/b", "/c"):
        client.add_operation("orders;rev=1", f"{path[1:]}-get", path, "GET", tags=("t",))

    snap = asyncio.run(take_snapshot(client, "orders;rev=1"))
    assert [op.url_template for op in snap.operations] == ["/a", "/b", "/c"]
    assert all(op.tags == ["t"] for op in snap.operations)

    r = Router()
    for path in ("/a", "/b", "/c"):
        r.get(path, h)
    result = asyncio.run(sync(r, settings=settings_for(), client=client, config=NO_REVISION))
    assert (result.created, result.edited, result.deleted) == (0, 3, 0)


def test_snapshot_failure_aborts(fake_registry):
    fake_registry.failing["list_operation_tags"] = lambda *a: True
    r = Router()
    r.get("/users", h)

    with pytest.raises(SnapshotError) as exc:
        asyncio.run(sync(r, settings=settings_for(), client=fake_registry, config=NO_REVISION))
    assert exc.value.stage == "snapshot"
    assert not any(name in WRITES for name, _ in fake_registry.calls)


def test_snapshot_failure_lets_other_listings_finish():
    client = FakeRegistry(page_size=1)
    client.add_api()
    for name in ("a", "b", "c"):
        client.add_tag(name)
    client.failing["list_operations"] = lambda *a: True

    with pytest.raises(SnapshotError):
        asyncio.run(take_snapshot(client, "orders;rev=1"))
    assert client.called("list_tags") == [(None,), ("1",), ("2",)]


def test_item_failures_are_counted_not_raised(fake_registry):
    fake_registry.failing["create_or_update_operation"] = lambda api, op, body: op.startswith("about")
    registry = AnnotationRegistry()

    result = asyncio.run(sync(three_routes(registry), settings=settings_for(), client=fake_registry,
                              registry=registry))

    assert result.created == 2
    assert len(result.failures) == 1
    assert result.failures[0].label.startswith("create about")
    assert not result.ok
    # the revision is still released
    assert result.promoted


def test_tag_failure_fails_the_item(fake_registry):
    fake_registry.failing["assign_tag"] = lambda *a: True
    r = Router()
    r.get("/users", h)

    result = asyncio.run(sync(r, settings=settings_for(), client=fake_registry, config=NO_REVISION))

    assert result.created == 0
    assert len(result.failures) == 1
    # the policy is still written
    assert fake_registry.called("create_or_update_policy")


def test_strict_duplicate_fails_before_any_remote_call(fake_registry):
    r = Router()
    r.get("/x", h)
    r.get("/x", h)

    with pytest.raises(DuplicateEndpointError):
        asyncio.run(sync(r, settings=settings_for(BREAK_ON_SAME_PATH=True), client=fake_registry))
    assert fake_registry.calls == []


def test_dry_run_writes_nothing(fake_registry):
    fake_registry.add_operation("orders;rev=1", "legacy-get", "/legacy", "GET")
    r = Router()
    r.get("/users", h)

    result = asyncio.run(sync(r, settings=settings_for(), client=fake_registry, dry_run=True))

    assert result.dry_run
    assert [ep.url_template for ep in result.plan.to_create] == ["/users"]
    assert result.plan.to_delete == ["legacy-get"]
    assert not any(name in WRITES for name, _ in fake_registry.calls)


def test_missing_api_id_is_reported(fake_registry):
    r = Router()
    r.get("/users", h)

    with pytest.raises(ApiNotFoundError):
        asyncio.run(sync(r, settings=Settings(_env_file=None, API_ID=None), client=fake_registry))


def test_reconcile_pinned_revision_skips_new_revision(fake_registry):
    fake_registry.operations["orders;rev=3"] = {}
    r = Router()
    r.get("/users", h)

    result = asyncio.run(
        reconcile(fake_registry, extract_endpoints(r), "orders;rev=3",
                  config=SyncConfig(generate_new_revision=False, make_new_revision_as_current=True))
    )

    assert result.api_name == "orders;rev=3"
    assert result.created == 1
    assert fake_registry.releases == [("orders", f"{SYSTEM_TAG}3release", "/apis/orders;rev=3")]
