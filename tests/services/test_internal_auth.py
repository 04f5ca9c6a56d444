from __future__ import annotations

from types import SimpleNamespace

from app.services.internal_auth import (
    InternalAccessPolicy,
    extract_client_ip,
    is_client_ip_allowed,
    is_valid_internal_token,
    parse_allowlist,
)


def _request(*, host: str | None, headers: dict[str, str] | None = None) -> SimpleNamespace:
    return SimpleNamespace(
        headers=headers or {},
        client=(SimpleNamespace(host=host) if host is not None else None),
    )


def test_is_valid_internal_token_requires_exact_match() -> None:
    assert is_valid_internal_token(expected_token="secret", received_token="secret") is True
    assert is_valid_internal_token(expected_token="secret", received_token="wrong") is False
    assert is_valid_internal_token(expected_token="secret", received_token=None) is False
    assert is_valid_internal_token(expected_token="", received_token="") is False


def test_is_client_ip_allowed_supports_exact_ip_and_cidr() -> None:
    allowlist = "127.0.0.1,10.0.0.0/8"
    assert is_client_ip_allowed(client_ip="127.0.0.1", allowlist=allowlist) is True
    assert is_client_ip_allowed(client_ip="10.12.33.1", allowlist=allowlist) is True
    assert is_client_ip_allowed(client_ip="192.168.1.5", allowlist=allowlist) is False
    assert is_client_ip_allowed(client_ip=None, allowlist=allowlist) is False


def test_parse_allowlist_skips_garbage_entries() -> None:
    networks = parse_allowlist(" 127.0.0.1 , not-a-network,, ::1/128")

    assert [str(network) for network in networks] == ["127.0.0.1/32", "::1/128"]
    assert is_client_ip_allowed(client_ip="127.0.0.1", allowlist="") is False


def test_extract_client_ip_uses_forwarded_header_only_for_trusted_proxy() -> None:
    request = _request(host="127.0.0.1", headers={"X-Forwarded-For": "10.1.1.8, 127.0.0.1"})
    assert extract_client_ip(request, trusted_proxies="127.0.0.1/32") == "10.1.1.8"


def test_extract_client_ip_ignores_forwarded_header_for_untrusted_proxy() -> None:
    request = _request(host="198.51.100.10", headers={"X-Forwarded-For": "10.1.1.8, 127.0.0.1"})
    assert extract_client_ip(request, trusted_proxies="127.0.0.1/32") == "198.51.100.10"


def test_extract_client_ip_rejects_invalid_forwarded_header_for_trusted_proxy() -> None:
    request = _request(host="127.0.0.1", headers={"X-Forwarded-For": "not-an-ip, 127.0.0.1"})
    assert extract_client_ip(request, trusted_proxies="127.0.0.1/32") is None


def test_extract_client_ip_handles_missing_or_named_clients() -> None:
    assert extract_client_ip(_request(host=None)) is None
    assert extract_client_ip(_request(host="testclient")) is None
    assert extract_client_ip(_request(host="::1")) == "::1"


def test_access_policy_checks_network_before_token() -> None:
    policy = InternalAccessPolicy(token="secret", allowlist="127.0.0.1/32")

    outside = _request(host="203.0.113.5", headers={"X-Internal-Token": "secret"})
    no_token = _request(host="127.0.0.1")
    wrong_token = _request(host="127.0.0.1", headers={"X-Internal-Token": "guess"})
    allowed = _request(host="127.0.0.1", headers={"X-Internal-Token": "secret"})

    assert policy.denial_reason(outside) == "ip_not_allowed"
    assert policy.denial_reason(no_token) == "invalid_token"
    assert policy.denial_reason(wrong_token) == "invalid_token"
    assert policy.denial_reason(allowed) is None
