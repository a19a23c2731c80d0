"""Tests for the agent pool: fingerprints, sharing and lifecycle."""

import socket
import ssl
import threading
import time
from concurrent.futures import ThreadPoolExecutor

import httpx
import pytest

from requestagent import (
    AgentPool,
    AgentTransport,
    InvalidOptionsError,
    PoolOptions,
    default_pool,
    fingerprint,
    set_default_pool,
)
from requestagent._pool import pool_limits, socket_options, ssl_context


def _mock_factory(options, scheme, ca):
    return httpx.MockTransport(lambda request: httpx.Response(200))


# ============================================================================
# Fingerprints
# ============================================================================


def test_fingerprint_is_deterministic():
    options = PoolOptions()

    assert fingerprint(options, "localhost", 80, "http") == fingerprint(
        options, "localhost", 80, "http"
    )


def test_fingerprint_ignores_option_order():
    forward = {"keep_alive": True, "max_sockets": 10, "max_free_sockets": 2}
    backward = {"max_free_sockets": 2, "max_sockets": 10, "keep_alive": True}

    assert fingerprint(forward, "localhost", 80, "http") == fingerprint(
        backward, "localhost", 80, "http"
    )


def test_fingerprint_accepts_dataclass_and_mapping_alike():
    options = PoolOptions()

    assert fingerprint(options, "localhost", 80, "http") == fingerprint(
        options.as_dict(), "localhost", 80, "http"
    )


@pytest.mark.parametrize(
    "other",
    [
        (PoolOptions(), "localhost", 81, "http"),
        (PoolOptions(), "localhost", 80, "https"),
        (PoolOptions(), "example.net", 80, "http"),
        (PoolOptions(max_sockets=1), "localhost", 80, "http"),
        (PoolOptions(secure_protocol="TLSv1_2_method"), "localhost", 80, "http"),
    ],
)
def test_fingerprint_differs_for_distinct_inputs(other):
    assert fingerprint(PoolOptions(), "localhost", 80, "http") != fingerprint(*other)


def test_fingerprint_includes_ca_material():
    options = PoolOptions()

    plain = fingerprint(options, "localhost", 443, "https")
    with_ca = fingerprint(options, "localhost", 443, "https", ca="-----BEGIN CERTIFICATE-----")

    assert plain != with_ca


def test_fingerprint_hash_is_configurable():
    options = PoolOptions()

    assert len(fingerprint(options, "localhost", 80, "http")) == 64
    assert len(fingerprint(options, "localhost", 80, "http", hash_name="sha1")) == 40


# ============================================================================
# PoolOptions
# ============================================================================


def test_pool_options_defaults():
    options = PoolOptions()

    assert options.keep_alive is True
    assert options.keep_alive_msecs == 1000
    assert options.max_sockets == 2048
    assert options.max_free_sockets == 256
    assert options.reject_unauthorized is True
    assert options.secure_protocol is None


def test_pool_options_from_request_options_casts_values():
    options = PoolOptions.from_options(
        {
            "keepAlive": 0,
            "keepAliveMsecs": "2500",
            "maxSockets": 12.0,
            "rejectUnauthorized": "",
            "secureProtocol": "TLSv1_2_method",
            "method": "POST",
        }
    )

    assert options == PoolOptions(
        keep_alive=False,
        keep_alive_msecs=2500,
        max_sockets=12,
        max_free_sockets=256,
        reject_unauthorized=False,
        secure_protocol="TLSv1_2_method",
    )


def test_pool_options_reject_uncastable_values():
    with pytest.raises(InvalidOptionsError):
        PoolOptions.from_options({"maxSockets": "many"})


def test_pool_options_reject_unknown_secure_protocol():
    with pytest.raises(InvalidOptionsError):
        PoolOptions.from_options({"secureProtocol": "FOO"})


def test_pool_options_are_immutable():
    options = PoolOptions()

    with pytest.raises(AttributeError):
        options.max_sockets = 1


# ============================================================================
# AgentPool
# ============================================================================


def test_get_or_create_returns_same_handle_for_same_destination():
    pool = AgentPool(transport_factory=_mock_factory)

    first = pool.get_or_create(PoolOptions(), "localhost", 80, "http")
    second = pool.get_or_create(PoolOptions(), "localhost", 80, "http")

    assert first is second
    assert len(pool) == 1


def test_get_or_create_separates_ports_and_schemes():
    pool = AgentPool(transport_factory=_mock_factory)

    plain = pool.get_or_create(PoolOptions(), "localhost", 80, "http")
    other_port = pool.get_or_create(PoolOptions(), "localhost", 8080, "http")
    tls = pool.get_or_create(PoolOptions(), "localhost", 443, "https")

    assert len({id(plain), id(other_port), id(tls)}) == 3
    assert len(pool) == 3


def test_get_or_create_refreshes_last_used():
    pool = AgentPool(transport_factory=_mock_factory)
    options = PoolOptions()
    key = pool.fingerprint(options, "localhost", 80, "http")

    pool.get_or_create(options, "localhost", 80, "http")
    entry = pool.entry(key)
    created = entry.last_used
    time.sleep(0.01)
    pool.get_or_create(options, "localhost", 80, "http")

    assert key in pool
    assert entry.last_used > created
    assert entry.keep_alive is True


def test_create_private_is_not_pooled():
    pool = AgentPool(transport_factory=_mock_factory)

    shared = pool.get_or_create(PoolOptions(), "localhost", 80, "http")
    private = pool.create_private(PoolOptions(), "http")

    assert private is not shared
    assert len(pool) == 1


def test_concurrent_callers_share_one_handle():
    created = []
    lock = threading.Lock()

    def slow_factory(options, scheme, ca):
        time.sleep(0.01)
        transport = httpx.MockTransport(lambda request: httpx.Response(200))
        with lock:
            created.append(transport)
        return transport

    pool = AgentPool(transport_factory=slow_factory)

    with ThreadPoolExecutor(max_workers=16) as executor:
        handles = list(
            executor.map(
                lambda _: pool.get_or_create(PoolOptions(), "localhost", 80, "http"),
                range(64),
            )
        )

    assert len(created) == 1
    assert all(handle is created[0] for handle in handles)


@pytest.mark.asyncio
async def test_aclose_closes_every_handle_and_empties_pool():
    closed = []

    class Handle(httpx.MockTransport):
        async def aclose(self) -> None:
            closed.append(self)

    pool = AgentPool(
        transport_factory=lambda options, scheme, ca: Handle(lambda request: httpx.Response(200))
    )
    pool.get_or_create(PoolOptions(), "localhost", 80, "http")
    pool.get_or_create(PoolOptions(), "example.net", 443, "https")

    await pool.aclose()

    assert len(closed) == 2
    assert len(pool) == 0


@pytest.mark.asyncio
async def test_pool_as_async_context_manager():
    async with AgentPool(transport_factory=_mock_factory) as pool:
        pool.get_or_create(PoolOptions(), "localhost", 80, "http")
        assert len(pool) == 1

    assert len(pool) == 0


def test_default_pool_is_process_wide_and_replaceable():
    first = default_pool()

    assert default_pool() is first

    replacement = AgentPool(transport_factory=_mock_factory)
    set_default_pool(replacement)

    assert default_pool() is replacement


# ============================================================================
# AgentTransport
# ============================================================================


def test_agent_transport_keeps_its_options():
    options = PoolOptions(max_sockets=4)
    transport = AgentTransport(options, "https")

    assert transport.options is options
    assert transport.scheme == "https"


def test_pool_limits_follow_options():
    limits = pool_limits(PoolOptions(max_sockets=10, max_free_sockets=3))

    assert limits.max_connections == 10
    assert limits.max_keepalive_connections == 3


def test_pool_limits_without_keep_alive():
    limits = pool_limits(PoolOptions(keep_alive=False))

    assert limits.max_keepalive_connections == 0


def test_socket_options_without_keep_alive_skip_keepalive_probes():
    options = socket_options(PoolOptions(keep_alive=False))

    assert all(level != socket.SOL_SOCKET for level, _, _ in options)


def test_ssl_context_verifies_peers_by_default():
    ctx = ssl_context(PoolOptions())

    assert ctx.verify_mode == ssl.CERT_REQUIRED
    assert ctx.check_hostname is True


def test_ssl_context_without_peer_verification():
    ctx = ssl_context(PoolOptions(reject_unauthorized=False))

    assert ctx.verify_mode == ssl.CERT_NONE
    assert ctx.check_hostname is False


def test_ssl_context_pins_secure_protocol():
    ctx = ssl_context(PoolOptions(secure_protocol="TLSv1_3_method"))

    assert ctx.minimum_version == ssl.TLSVersion.TLSv1_3
    assert ctx.maximum_version == ssl.TLSVersion.TLSv1_3
