#!/usr/bin/env python3
"""
Tests for semantic tool name resolution.
"""

import logging

import pytest

from imc_chat.tools import UNKNOWN_TOOL_NAME, ToolNameResolver, camel_to_snake


@pytest.fixture
def resolver():
    return ToolNameResolver()


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("policyServer_getPolicyVehicles", "get_policy_vehicles"),
        ("conn_GETPOLICYDETAILS", "get_policy_details"),
        ("mcp_searchPolicies", "search_policies"),
        ("mcp_search_policies", "search_policies"),
        ("getPolicyVehicles", "get_policy_vehicles"),
        ("server_getClaimHistory", "get_claim_history"),
        ("getClaimHistory", "get_claim_history"),
        ("lookup", "lookup"),
    ],
)
def test_resolve(resolver, raw, expected):
    assert resolver.resolve(raw) == expected


def test_prefix_is_everything_before_first_underscore(resolver):
    # No connection prefix: the leading segment is still dropped
    assert resolver.resolve("search_policies") == "policies"


def test_trailing_separator_keeps_whole_identifier(resolver):
    assert resolver.resolve("fetchData_") == "fetch_data_"


@pytest.mark.parametrize("raw", ["", None])
def test_empty_identifier(resolver, raw):
    assert resolver.resolve(raw) == UNKNOWN_TOOL_NAME
    assert resolver.cache_size() == 0


def test_resolution_is_memoized(resolver, caplog):
    with caplog.at_level(logging.INFO, logger="imc_chat.tools.name_resolver"):
        first = resolver.resolve("srv_getPolicyDetails")
        second = resolver.resolve("srv_getPolicyDetails")

    assert first == second == "get_policy_details"
    assert resolver.cache_size() == 1
    generated = [r for r in caplog.records if "Generated semantic tool name" in r.message]
    assert len(generated) == 1


def test_clear_cache(resolver):
    resolver.resolve("a_fooBar")
    resolver.clear_cache()
    assert resolver.cache_size() == 0
    assert resolver.resolve("a_fooBar") == "foo_bar"


def test_extra_known_names():
    resolver = ToolNameResolver({"FindClaims": "search_claims"})
    assert resolver.resolve("claims_findclaims") == "search_claims"


def test_camel_to_snake():
    assert camel_to_snake("getPolicyVehicles") == "get_policy_vehicles"
    assert camel_to_snake("already_snake") == "already_snake"
    assert camel_to_snake("HTTPServer") == "httpserver"
