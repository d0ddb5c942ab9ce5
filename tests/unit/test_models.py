"""Tests for configuration models and persisted state."""

import pytest

from restful.config import ResourceDefaults
from restful.models import (
    EphemeralResourceConfig,
    ImportSpec,
    OperationConfig,
    ResourceConfig,
    ResourceState,
)
from restful.models.resource import BodyPatch, PollSpec, PrecheckApi, PrecheckMutex, RetrySpec
from restful.models.state import UpdatePlan
from restful.persistence.private_state import PrivateState
from restful.utils.exceptions import ConfigError


class TestResourceConfig:
    """Test resource configuration validation and defaults."""

    def test_minimal(self):
        config = ResourceConfig.parse({"path": "/posts", "body": {"foo": "bar"}})

        assert config.read_method == "GET"
        assert config.create_method is None
        assert config.query == {}

    def test_query_shorthand_and_method_case(self):
        config = ResourceConfig.parse(
            {"path": "/posts", "query": {"v": 2, "tag": ["a", "b"]}, "update_method": "patch"}
        )

        assert config.query == {"v": ["2"], "tag": ["a", "b"]}
        assert config.update_method == "PATCH"

    @pytest.mark.parametrize(
        "data",
        [
            {"path": ""},
            {"path": "/p", "create_method": "GET"},
            {"path": "/p", "read_method": "DELETE"},
            {"path": "/p", "body": [1, 2]},
            {"path": "/p", "ephemeral_body": "s"},
            {"path": "/p", "delete_body": {}, "delete_body_raw": "{}"},
            {"path": "/p", "unknown_field": 1},
        ],
    )
    def test_invalid(self, data):
        with pytest.raises(ConfigError):
            ResourceConfig.parse(data)

    def test_with_defaults(self):
        defaults = ResourceDefaults(
            update_method="patch",
            merge_patch_disabled=True,
            query={"api-version": ["1"]},
            header={"X-A": "default", "X-B": "b"},
        )
        config = ResourceConfig.parse(
            {"path": "/p", "delete_method": "POST", "header": {"X-A": "mine"}}
        )

        merged = config.with_defaults(defaults)

        assert merged.create_method == "POST"
        assert merged.update_method == "PATCH"
        assert merged.delete_method == "POST"
        assert merged.merge_patch_disabled is True
        assert merged.query == {"api-version": ["1"]}
        assert merged.header == {"X-A": "mine", "X-B": "b"}
        assert config.create_method is None

    def test_poll_locator_is_checked(self):
        with pytest.raises(ConfigError):
            ResourceConfig.parse(
                {
                    "path": "/p",
                    "poll_create": {"status_locator": "status", "status": {"success": "Done"}},
                }
            )

    def test_precheck_items_by_tag(self):
        config = ResourceConfig.parse(
            {
                "path": "/p",
                "precheck_create": [
                    {"tag": "mutex", "name": "lease"},
                    {"tag": "api", "status_locator": "code", "status": {"success": "200"}},
                ],
            }
        )

        assert isinstance(config.precheck_create[0], PrecheckMutex)
        assert isinstance(config.precheck_create[1], PrecheckApi)

    def test_retry_spec_to_policy(self):
        policy = RetrySpec(status_codes=[429], count=4, wait_sec=2, max_wait_sec=20).to_policy()

        assert policy.status_codes == frozenset({429})
        assert policy.count == 4
        assert policy.max_wait == 20

    def test_body_patch_needs_one_action(self):
        with pytest.raises(ConfigError):
            BodyPatch.parse({"path": "a"})
        with pytest.raises(ConfigError):
            BodyPatch.parse({"path": "a", "raw_json": "1", "removed": True})

    def test_poll_spec_defaults(self):
        spec = PollSpec.parse({"status_locator": "body.s", "status": {"success": "ok"}})
        assert spec.default_delay_sec == 10.0
        assert spec.status.failure is None


class TestImportSpec:
    def test_defaults_path_to_id(self):
        config = ImportSpec.parse({"id": "/posts/1"}).to_config()

        assert config.path == "/posts/1"

    def test_overlays_base(self):
        base = ResourceConfig.parse({"path": "/posts", "body": {"a": 1}, "read_selector": "x"})
        spec = ImportSpec.parse(
            {"id": "/posts/1", "body": {"b": None}, "output_attrs": ["b"]}
        )

        config = spec.to_config(base)

        assert config.path == "/posts"
        assert config.body == {"b": None}
        assert config.read_selector == "x"
        assert config.output_attrs == ["b"]

    def test_unknown_override(self):
        with pytest.raises(ConfigError, match="unknown import override"):
            ImportSpec.parse({"id": "/x", "nope": 1}).to_config()

    def test_id_required(self):
        with pytest.raises(ConfigError):
            ImportSpec.parse({"path": "/x"})


class TestOneShotConfigs:
    def test_operation_defaults(self):
        config = OperationConfig.parse({"path": "/posts/1", "delete": {"method": "put"}})

        assert config.method == "POST"
        assert config.delete.method == "PUT"

    def test_expiry_settings_go_together(self):
        with pytest.raises(ConfigError):
            EphemeralResourceConfig.parse(
                {"open": {"path": "/sessions"}, "expiry_locator": "body.ttl"}
            )

    @pytest.mark.parametrize("expiry_type", ["epoch", "duration.x"])
    def test_invalid_expiry_type(self, expiry_type):
        with pytest.raises(ConfigError):
            EphemeralResourceConfig.parse(
                {
                    "open": {"path": "/sessions"},
                    "expiry_locator": "body.ttl",
                    "expiry_type": expiry_type,
                }
            )

    def test_time_layout_accepted(self):
        config = EphemeralResourceConfig.parse(
            {
                "open": {"path": "/sessions"},
                "expiry_locator": "body.expires",
                "expiry_type": "time.2006-01-02",
            }
        )
        assert config.expiry_type == "time.2006-01-02"


class TestResourceState:
    def test_round_trip(self):
        state = ResourceState(
            id="/posts/1",
            path="/posts",
            body={"a": 1},
            output={"a": 1, "id": 1},
            query={"v": ["1"]},
            private=PrivateState(eph_hash="h"),
        )

        assert ResourceState.from_dict(state.to_dict()) == state

    def test_outputs_are_exclusive(self):
        with pytest.raises(ValueError):
            ResourceState(id="x", path="x", output={}, sensitive_output={})

    def test_with_output(self):
        state = ResourceState(id="x", path="x", output={"a": 1})

        sensitive = state.with_output({"b": 2}, sensitive=True)

        assert sensitive.output is None
        assert sensitive.current_output == {"b": 2}
        assert state.output == {"a": 1}

    def test_update_plan_flags(self):
        assert not UpdatePlan().has_changes
        assert UpdatePlan(ephemeral_changed=True).has_changes
        plan = UpdatePlan(replace_reasons=["body.name"])
        assert plan.requires_replace and plan.has_changes
