import pytest

from mcp_client.capabilities import CapabilitySet, NegotiatedCapabilities, capability_for_method
from mcp_client.exceptions import MissingCapabilityError


def test_capability_set_from_mapping():
    capabilities = CapabilitySet({"tools": {"listChanged": True}, "sampling": {}, "roots": None, "elicitation": False})
    assert capabilities.names == frozenset({"tools", "sampling"})
    assert capabilities["tools"] == {"listChanged": True}
    assert capabilities.to_dict() == {"tools": {"listChanged": True}, "sampling": {}}


def test_capability_set_from_names():
    capabilities = CapabilitySet(["tools", "prompts"])
    assert set(capabilities) == {"tools", "prompts"}
    assert capabilities["prompts"] == {}


def test_capability_set_is_immutable():
    capabilities = CapabilitySet({"tools": {"listChanged": True}})
    with pytest.raises(TypeError):
        capabilities["tools"]["listChanged"] = False  # type: ignore[index]


def test_negotiate_intersects():
    negotiated = NegotiatedCapabilities.negotiate(
        CapabilitySet(["tools", "resources", "sampling"]),
        CapabilitySet(["tools", "resources", "prompts"]),
    )
    assert negotiated.negotiated == frozenset({"tools", "resources"})
    assert negotiated.supports("tools")
    assert not negotiated.supports("prompts")
    assert not negotiated.supports("sampling")


def test_negotiate_missing_required_capability():
    with pytest.raises(MissingCapabilityError) as exc_info:
        NegotiatedCapabilities.negotiate(
            CapabilitySet(["tools"]),
            CapabilitySet(["tools"]),
            required_by_server=["sampling", "roots", "tools"],
        )
    assert exc_info.value.missing == ["roots", "sampling"]


@pytest.mark.parametrize(
    ("method", "capability"),
    [
        ("tools/call", "tools"),
        ("tools/list", "tools"),
        ("resources/read", "resources"),
        ("prompts/get", "prompts"),
        ("logging/setLevel", "logging"),
        ("completion/complete", "completions"),
        ("ping", None),
        ("custom/method", None),
    ],
)
def test_capability_for_method(method: str, capability: str | None):
    assert capability_for_method(method) == capability
