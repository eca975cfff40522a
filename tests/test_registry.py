import pytest

from dirreconciler.core.errors import FatalError
from dirreconciler.kinds.api_keys import ApiKeyKind
from dirreconciler.kinds.base import KindPolicy, ResourceKind
from dirreconciler.kinds.registry import build_registry


def test_registry_exposes_every_kind():
    reg = build_registry()
    assert reg.names() == [
        "api_key",
        "application_group_mapping",
        "mdm_device_action",
        "mfa_settings",
        "system_group_membership",
        "user_group",
        "user_group_membership",
    ]
    for name in reg:
        kind = reg[name]
        assert isinstance(kind, ResourceKind)
        assert kind.name == name
        assert reg.spec(name).help


def test_unknown_kind_is_fatal():
    reg = build_registry()
    assert "group" not in reg
    with pytest.raises(FatalError) as ei:
        reg["group"]
    assert "user_group" in str(ei.value)
    with pytest.raises(FatalError):
        reg.spec("group")


def test_policy_overrides_are_applied_per_kind():
    reg = build_registry(
        {
            "user_group": {"precheck": False},
            "mfa_settings": {"reset_defaults": {"enabledMethods": ["totp"]}},
            "mdm_device_action": {"action_timeout_sec": 30},
        }
    )
    assert reg["user_group"].policy.precheck is False
    assert reg["mfa_settings"].policy.reset_defaults == {"enabledMethods": ["totp"]}
    assert reg["mdm_device_action"].action_timeout({"timeout": 300}) == 30.0
    # untouched kinds keep their defaults
    assert build_registry()["user_group"].policy.precheck is True
    assert reg["application_group_mapping"].policy.precheck is False


def test_invalid_overrides_are_rejected():
    with pytest.raises(FatalError):
        build_registry({"no_such_kind": {}})
    with pytest.raises(FatalError):
        build_registry({"user_group": {"retries": 3}})
    with pytest.raises(FatalError):
        build_registry({"mfa_settings": {"reset_defaults": ["not", "a", "mapping"]}})


def test_registry_is_read_only():
    reg = build_registry()
    with pytest.raises(TypeError):
        reg["user_group"] = None


def test_precheck_is_refused_for_kinds_without_an_existence_check():
    for name in ("api_key", "mdm_device_action", "mfa_settings"):
        with pytest.raises(FatalError) as ei:
            build_registry({name: {"precheck": True}})
        assert "precheck" in str(ei.value)
    with pytest.raises(FatalError):
        ApiKeyKind(KindPolicy(precheck=True))


def test_precheck_can_be_enabled_where_supported():
    reg = build_registry(
        {"user_group_membership": {"precheck": True}, "application_group_mapping": {"precheck": True}}
    )
    assert reg["user_group_membership"].policy.precheck is True
    assert reg["application_group_mapping"].policy.precheck is True
    assert reg["api_key"].supports_precheck is False


def test_negative_action_timeout_is_rejected():
    with pytest.raises(FatalError):
        build_registry({"mdm_device_action": {"action_timeout_sec": -1}})
