"""Capability sets and their negotiation during the handshake."""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from types import MappingProxyType
from typing import Any

from pydantic import BaseModel, ConfigDict

from mcp_client.exceptions import MissingCapabilityError

# Method prefixes whose requests need the named server capability.
METHOD_CAPABILITIES: Mapping[str, str] = MappingProxyType(
    {
        "tools/": "tools",
        "resources/": "resources",
        "prompts/": "prompts",
        "logging/": "logging",
        "completion/": "completions",
    }
)

DEFAULT_CLIENT_CAPABILITIES: Mapping[str, dict[str, Any]] = MappingProxyType(
    {
        "tools": {},
        "resources": {},
        "prompts": {},
        "logging": {},
        "completions": {},
    }
)


class CapabilitySet(Mapping[str, Mapping[str, Any]]):
    """Immutable mapping of capability name to its options."""

    __slots__ = ("_entries",)

    def __init__(self, entries: Mapping[str, Any] | Iterable[str] | None = None):
        if entries is None:
            items: dict[str, Mapping[str, Any]] = {}
        elif isinstance(entries, Mapping):
            # A capability declared as null/false is treated as absent.
            items = {
                name: MappingProxyType(dict(options) if isinstance(options, Mapping) else {})
                for name, options in entries.items()
                if options is not None and options is not False
            }
        else:
            items = {name: MappingProxyType({}) for name in entries}
        self._entries = MappingProxyType(items)

    def __getitem__(self, name: str) -> Mapping[str, Any]:
        return self._entries[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"CapabilitySet({sorted(self._entries)!r})"

    @property
    def names(self) -> frozenset[str]:
        return frozenset(self._entries)

    def to_dict(self) -> dict[str, dict[str, Any]]:
        return {name: dict(options) for name, options in self._entries.items()}


def capability_for_method(method: str) -> str | None:
    """Return the capability a method requires, if it is a well-known one."""
    for prefix, capability in METHOD_CAPABILITIES.items():
        if method.startswith(prefix):
            return capability
    return None


class NegotiatedCapabilities(BaseModel):
    """Result of the capability handshake; frozen for the life of the connection."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    client: CapabilitySet
    server: CapabilitySet
    negotiated: frozenset[str]

    def supports(self, capability: str) -> bool:
        return capability in self.negotiated

    @classmethod
    def negotiate(
        cls,
        client: CapabilitySet,
        server: CapabilitySet,
        required_by_server: Iterable[str] = (),
    ) -> NegotiatedCapabilities:
        """Intersect both sides' capability sets.

        Raises:
            MissingCapabilityError: if the server requires a capability the
                client does not declare
        """
        missing = sorted(set(required_by_server) - client.names)
        if missing:
            raise MissingCapabilityError(missing)
        return cls(client=client, server=server, negotiated=client.names & server.names)
