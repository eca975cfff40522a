import pytest

from dirreconciler.core.errors import FatalError, InvalidSegment, MalformedIdentity
from dirreconciler.core.identity import (
    CompositeKey,
    OpaqueIdentity,
    SingletonIdentity,
    decode,
    encode,
)

APP_GROUP = CompositeKey(
    ("application_id", "type", "group_id"),
    {"type": frozenset({"user_group", "system_group"})},
)


@pytest.mark.parametrize(
    "segments",
    [["app1", "grp2"], ["app1", "user_group", "usr9"], ["5f1e0a", "64b2c3"]],
)
def test_decode_inverts_encode(segments):
    assert decode(encode(segments), len(segments)) == segments


def test_two_segment_key_decodes():
    assert decode("app1:grp2", 2) == ["app1", "grp2"]


def test_three_segment_key_with_type_tag():
    assert APP_GROUP.parse("app1:user_group:usr9") == {
        "application_id": "app1",
        "type": "user_group",
        "group_id": "usr9",
    }
    with pytest.raises(MalformedIdentity):
        decode("app1:user_group:usr9", 2)


@pytest.mark.parametrize("identity", ["app1", "a:b:c:d", ""])
def test_arity_mismatch_is_malformed(identity):
    with pytest.raises(MalformedIdentity):
        decode(identity, 2)


def test_segment_with_delimiter_is_rejected():
    with pytest.raises(InvalidSegment):
        encode(["app:1", "grp2"])


def test_empty_segment_is_rejected_unless_allowed():
    with pytest.raises(InvalidSegment):
        encode(["app1", ""])
    assert encode(["app1", ""], allow_empty=True) == "app1:"


def test_identity_errors_are_fatal():
    assert issubclass(MalformedIdentity, FatalError)
    assert issubclass(InvalidSegment, FatalError)


def test_composite_format_validates_type_tag():
    state = {"application_id": "app1", "type": "user_group", "group_id": "grp2"}
    assert APP_GROUP.format(state) == "app1:user_group:grp2"
    with pytest.raises(InvalidSegment):
        APP_GROUP.format({**state, "type": "group"})


def test_composite_parse_rejects_unknown_tag_and_empty_segment():
    with pytest.raises(MalformedIdentity):
        APP_GROUP.parse("app1:group:grp2")
    with pytest.raises(MalformedIdentity):
        APP_GROUP.parse("app1:user_group:")


def test_composite_arity_is_two_or_three():
    with pytest.raises(ValueError):
        CompositeKey(("a",))
    with pytest.raises(ValueError):
        CompositeKey(("a", "b", "c", "d"))


def test_assigned_segments_make_key_non_local():
    local = CompositeKey(("user_group_id", "user_id"))
    remote = CompositeKey(("device_id", "action_id"), assigned=frozenset({"action_id"}))
    assert local.local is True
    assert remote.local is False
    with pytest.raises(ValueError):
        CompositeKey(("device_id", "action_id"), assigned=frozenset({"other"}))


def test_opaque_identity():
    scheme = OpaqueIdentity("id")
    assert scheme.local is False
    assert scheme.format({"id": "5f1e"}) == "5f1e"
    assert scheme.parse("5f1e") == {"id": "5f1e"}
    with pytest.raises(InvalidSegment):
        scheme.format({"name": "no id here"})
    with pytest.raises(MalformedIdentity):
        scheme.parse("")


def test_singleton_identity_falls_back_to_alias():
    scheme = SingletonIdentity("org_id")
    assert scheme.format({"org_id": ""}) == "current"
    assert scheme.format({"org_id": "org42"}) == "org42"
    assert scheme.parse("current") == {"org_id": ""}
    assert scheme.parse("org42") == {"org_id": "org42"}
    with pytest.raises(MalformedIdentity):
        scheme.parse("org:42")
