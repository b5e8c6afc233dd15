"""Tests for mapping internal step targets to stateful endpoints."""

from mockchain.service.plan import InternalTarget
from mockchain.service.resolver import TargetResolver, split_item_path


class TestSplitItemPath:
    def test_numeric_tail(self):
        assert split_item_path("/users/7") == ("/users", "7")

    def test_id_placeholder_is_stripped(self):
        assert split_item_path("/users/:id") == ("/users", None)

    def test_collection(self):
        assert split_item_path("/users/") == ("/users", None)

    def test_single_numeric_segment_is_not_split(self):
        assert split_item_path("/2024") == ("/2024", None)


class TestTargetResolver:
    def test_resolves_within_named_project(self, memory_store, make_project):
        fx = make_project("WS1", "PJ1")
        stateful = fx.stateful("GET", "/orders")
        resolved = TargetResolver(memory_store).resolve(
            InternalTarget(method="GET", workspace="ws1", project="pj1", logical_path="/orders")
        )
        assert resolved is not None
        assert resolved.endpoint_id == stateful.id
        assert resolved.origin_id == stateful.endpoint_id
        assert resolved.project_id == fx.project.id
        assert resolved.id_in_url is None
        assert (resolved.workspace_name, resolved.project_name) == ("WS1", "PJ1")

    def test_disambiguates_same_path_across_projects(self, memory_store, make_project):
        first = make_project()
        ws2 = memory_store.create_workspace("ws2")
        pj2 = memory_store.create_project(ws2.id, "pj2")
        folder2 = memory_store.create_folder(pj2.id, "f")
        other_origin = memory_store.create_endpoint(folder2.id, "orders", "POST", "/orders")
        memory_store.make_stateful(other_origin.id)
        mine = first.stateful("POST", "/orders")

        resolved = TargetResolver(memory_store).resolve(
            InternalTarget(method="POST", logical_path="/orders"),
            default_workspace="ws1",
            default_project="pj1",
        )
        assert resolved.endpoint_id == mine.id
        assert resolved.workspace_name == "ws1"

    def test_strips_id_suffix_and_numeric_segment(self, memory_store, make_project):
        fx = make_project()
        fx.stateful("PUT", "/orders")
        resolver = TargetResolver(memory_store)
        target = InternalTarget(method="PUT", workspace="ws1", project="pj1", logical_path="/orders/:id")
        assert resolver.resolve(target).base_path == "/orders"
        resolved = resolver.resolve(target, logical_path="/orders/15")
        assert resolved.base_path == "/orders"
        assert resolved.id_in_url == "15"

    def test_missing_project_returns_none(self, memory_store, make_project):
        make_project().stateful("GET", "/orders")
        target = InternalTarget(method="GET", workspace="ws1", project="nope", logical_path="/orders")
        assert TargetResolver(memory_store).resolve(target) is None

    def test_method_mismatch_returns_none(self, memory_store, make_project):
        make_project().stateful("GET", "/orders")
        target = InternalTarget(method="DELETE", workspace="ws1", project="pj1", logical_path="/orders")
        assert TargetResolver(memory_store).resolve(target) is None

    def test_inactive_endpoint_is_ignored(self, memory_store, make_project):
        stateful = make_project().stateful("GET", "/orders")
        memory_store.revert_to_stateless(stateful.endpoint_id)
        target = InternalTarget(method="GET", workspace="ws1", project="pj1", logical_path="/orders")
        assert TargetResolver(memory_store).resolve(target) is None

    def test_unroutable_target(self, memory_store):
        assert TargetResolver(memory_store).resolve(InternalTarget(method="GET")) is None
