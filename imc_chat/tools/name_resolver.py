"""
Semantic tool names for MCP tools.

MCP servers publish tools under provider-defined identifiers such as
``policyServer_getPolicyVehicles`` or ``mcp_searchPolicies``.  The model is
far more reliable when it sees stable snake_case names, so every raw
identifier is mapped once to a semantic name and the result is cached.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping

logger = logging.getLogger(__name__)

UNKNOWN_TOOL_NAME = "unknown_tool"
CONNECTION_SEPARATOR = "_"

# Lower-cased base name -> canonical name
KNOWN_TOOL_NAMES: dict[str, str] = {
    "getpolicyvehicles": "get_policy_vehicles",
    "get_policy_vehicles": "get_policy_vehicles",
    "getpolicydetails": "get_policy_details",
    "get_policy_details": "get_policy_details",
    "searchpolicies": "search_policies",
    "search_policies": "search_policies",
}

_CAMEL_BOUNDARY = re.compile(r"([a-z])([A-Z])")


def camel_to_snake(name: str) -> str:
    """Insert `_` at each lower->upper boundary and lower-case the result."""
    return _CAMEL_BOUNDARY.sub(r"\1_\2", name).lower()


class ToolNameResolver:
    """
    Resolve raw tool identifiers into semantic names.

    Resolution is deterministic:
    1. drop a connection prefix (everything up to the first ``_``)
    2. match the remaining base name case-insensitively against the known
       tool table
    3. otherwise convert camelCase to snake_case
    Empty identifiers resolve to ``unknown_tool``.

    The memo cache only ever grows; recomputing an entry yields the same
    value, so concurrent callers cannot observe conflicting names.
    """

    def __init__(self, extra_known_names: Mapping[str, str] | None = None) -> None:
        self._known = dict(KNOWN_TOOL_NAMES)
        for alias, canonical in (extra_known_names or {}).items():
            self._known[alias.lower()] = canonical
        self._cache: dict[str, str] = {}

    def resolve(self, raw_identifier: str | None) -> str:
        if not raw_identifier:
            return UNKNOWN_TOOL_NAME

        cached = self._cache.get(raw_identifier)
        if cached is not None:
            return cached

        resolved = self._generate_semantic_name(raw_identifier)
        self._cache[raw_identifier] = resolved
        logger.info(f"Generated semantic tool name: {raw_identifier} -> {resolved}")
        return resolved

    def _generate_semantic_name(self, raw_identifier: str) -> str:
        base_name = raw_identifier
        if CONNECTION_SEPARATOR in raw_identifier:
            _, suffix = raw_identifier.split(CONNECTION_SEPARATOR, 1)
            if suffix:
                base_name = suffix

        known = self._known.get(base_name.lower())
        if known:
            return known

        return camel_to_snake(base_name)

    def cache_size(self) -> int:
        return len(self._cache)

    def clear_cache(self) -> None:
        self._cache.clear()
