"""
Unit tests for chain helpers and network utilities

Tests:
1. SPL mint account decoding
2. Keypair loading
3. Retry wrapping and circuit breaker
"""

import json
import struct

import pytest
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from pool_sniper.core.rpc_client import parse_mint_account
from pool_sniper.core.wallet import Wallet, load_keypair
from pool_sniper.exceptions import ConfigurationException, DataUnavailable
from pool_sniper.utils.retry import BreakerState, CircuitBreaker, async_retry


def _mint_bytes(authority=None, supply=1_000_000, decimals=6, freeze=None):
    data = bytearray(82)
    if authority is not None:
        struct.pack_into("<I", data, 0, 1)
        data[4:36] = bytes(authority)
    struct.pack_into("<Q", data, 36, supply)
    data[44] = decimals
    data[45] = 1
    if freeze is not None:
        struct.pack_into("<I", data, 46, 1)
        data[50:82] = bytes(freeze)
    return bytes(data)


class TestParseMintAccount:
    def test_renounced_mint(self):
        info = parse_mint_account("mint", _mint_bytes(supply=42, decimals=9))
        assert info.mint_authority is None
        assert info.freeze_authority is None
        assert info.supply == 42
        assert info.decimals == 9

    def test_authorities_present(self):
        authority = Pubkey.new_unique()
        freeze = Pubkey.new_unique()
        info = parse_mint_account("mint", _mint_bytes(authority=authority, freeze=freeze))
        assert info.mint_authority == str(authority)
        assert info.freeze_authority == str(freeze)

    def test_short_data(self):
        with pytest.raises(DataUnavailable):
            parse_mint_account("mint", b"\x00" * 10)


class TestKeypairLoading:
    def test_json_byte_array(self):
        kp = Keypair()
        loaded = load_keypair(json.dumps(list(bytes(kp))))
        assert loaded.pubkey() == kp.pubkey()

    def test_base58(self):
        kp = Keypair()
        assert Wallet.from_secret(str(kp)).public_key == kp.pubkey()

    def test_missing_or_garbage(self):
        with pytest.raises(ConfigurationException):
            load_keypair(None)
        with pytest.raises(ConfigurationException):
            load_keypair("not-a-key")
        with pytest.raises(ConfigurationException):
            load_keypair("[1, 2, 3]")


class TestAsyncRetry:
    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self):
        calls = []

        @async_retry(max_attempts=3, delay=0)
        async def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise ConnectionError("reset")
            return "ok"

        assert await flaky() == "ok"
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_final_error_wrapped(self):
        @async_retry(max_attempts=2, delay=0, wrap_as=DataUnavailable)
        async def broken():
            raise TimeoutError("rpc timeout")

        with pytest.raises(DataUnavailable):
            await broken()

    @pytest.mark.asyncio
    async def test_engine_errors_not_retried(self):
        calls = []

        @async_retry(max_attempts=3, delay=0)
        async def missing():
            calls.append(1)
            raise DataUnavailable("Mint account not found")

        with pytest.raises(DataUnavailable):
            await missing()
        assert len(calls) == 1


class TestCircuitBreaker:
    def test_opens_and_recovers(self):
        now = [0.0]
        cb = CircuitBreaker(failure_threshold=2, recovery_timeout=60, clock=lambda: now[0])
        cb.record_failure()
        assert cb.can_execute()
        cb.record_failure()
        assert cb.state == BreakerState.OPEN
        assert not cb.can_execute()

        now[0] = 61
        assert cb.can_execute()
        assert cb.state == BreakerState.HALF_OPEN
        cb.record_success()
        assert cb.state == BreakerState.CLOSED

    def test_half_open_failure_reopens(self):
        now = [0.0]
        cb = CircuitBreaker(failure_threshold=1, recovery_timeout=10, clock=lambda: now[0])
        cb.record_failure()
        now[0] = 11
        assert cb.can_execute()
        cb.record_failure()
        assert not cb.can_execute()
