"""Tests for turning stored next-call configuration into a plan."""

from mockchain.service.plan import (
    AUTH_SAME_USER,
    ExternalTarget,
    InternalTarget,
    build_plan,
)


class TestBuildPlanTotality:
    def test_non_list_inputs_give_empty_plan(self):
        assert build_plan(None) == []
        assert build_plan("steps") == []
        assert build_plan(42) == []
        assert build_plan({"other": []}) == []

    def test_object_with_next_calls(self):
        plan = build_plan({"nextCalls": [{"target_endpoint": "/ws/pj/orders"}]})
        assert len(plan) == 1

    def test_garbage_entries_become_unroutable_steps(self):
        plan = build_plan([None, "x", {"target_endpoint": 5}])
        assert [step.name for step in plan] == ["step-1", "step-2", "step-3"]
        for step in plan:
            assert isinstance(step.target, InternalTarget)
            assert step.target.logical_path is None


class TestTargets:
    def test_routed_internal_path(self):
        (step,) = build_plan([{"target_endpoint": "/ws1/pj1/orders/:id", "method": "put"}])
        assert step.target == InternalTarget(
            method="PUT", workspace="ws1", project="pj1", logical_path="/orders/:id"
        )
        assert not step.is_external

    def test_absolute_url_is_external(self):
        (step,) = build_plan([{"target_endpoint": "HTTPS://api.example.com/hooks/a?x=1", "method": "POST"}])
        assert isinstance(step.target, ExternalTarget)
        assert step.target.url == "HTTPS://api.example.com/hooks/a?x=1"
        assert step.target.path == "/hooks/a"
        assert step.is_external

    def test_short_path_is_unroutable(self):
        (step,) = build_plan([{"target_endpoint": "/orders"}])
        assert step.target.workspace is None
        assert step.target.project is None
        assert step.target.logical_path is None

    def test_method_defaults_to_get(self):
        (step,) = build_plan([{"target_endpoint": "/ws/pj/a"}])
        assert step.target.method == "GET"


class TestDefaults:
    def test_defaults(self):
        (step,) = build_plan([{"target_endpoint": "/ws/pj/a"}])
        assert step.delay_ms == 0
        assert step.timeout_ms == 0
        assert step.log.persist is True
        assert step.log.notify is False
        assert step.auth_mode == AUTH_SAME_USER
        assert step.headers_template == {}
        assert step.condition is None

    def test_delay_and_timeout_variants(self):
        plan = build_plan(
            [
                {"delayMs": 150, "timeout_ms": "2000"},
                {"delay_ms": -5, "timeoutMs": "soon"},
            ]
        )
        assert (plan[0].delay_ms, plan[0].timeout_ms) == (150, 2000)
        assert (plan[1].delay_ms, plan[1].timeout_ms) == (0, 0)

    def test_log_flags(self):
        plan = build_plan(
            [
                {"log": {"persist": False, "notify": True}},
                {"log": {"persist": None}},
            ]
        )
        assert plan[0].log.persist is False
        assert plan[0].log.notify is True
        assert plan[1].log.persist is True

    def test_auth_mode_override(self):
        (step,) = build_plan([{"auth": {"mode": "anonymous"}}])
        assert step.auth_mode == "anonymous"

    def test_names(self):
        plan = build_plan([{"name": "create order"}, {"id": "abc"}, {}])
        assert [s.name for s in plan] == ["create order", "step-abc", "step-3"]

    def test_body_headers_condition_kept(self):
        (step,) = build_plan(
            [
                {
                    "body": {"id": "{{1.response.body.id}}"},
                    "headers": {"X-Trace": "{{root.request.headers.x-trace}}"},
                    "condition": 201,
                }
            ]
        )
        assert step.payload_template == {"id": "{{1.response.body.id}}"}
        assert step.headers_template == {"X-Trace": "{{root.request.headers.x-trace}}"}
        assert step.condition == 201
