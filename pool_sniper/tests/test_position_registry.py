"""
Unit tests for the Position Registry

Tests:
1. Create / duplicate create / monitor spawning
2. Exit accounting and status transitions
3. Snapshot isolation and JSON snapshots
"""

import asyncio
import json

import pytest

from conftest import OTHER_MINT, TOKEN_MINT
from pool_sniper.constants import WSOL_MINT
from pool_sniper.core.models import ExitReason, Position, PositionStatus
from pool_sniper.core.position_registry import PositionRegistry
from pool_sniper.exceptions import StateException


def _position(mint=TOKEN_MINT, amount=1000):
    return Position(mint=mint, quote_mint=WSOL_MINT, decimals=6, buy_price=0.001, amount=amount)


class TestCreate:
    @pytest.mark.asyncio
    async def test_create_opens_and_spawns_one_monitor(self):
        started = []

        async def monitor(mint):
            started.append(mint)

        registry = PositionRegistry(monitor_factory=monitor)
        created = await registry.create(_position())
        await registry.wait_monitors(timeout=1)

        assert created.status == PositionStatus.OPEN
        assert created.initial_amount == 1000
        assert started == [TOKEN_MINT]

    @pytest.mark.asyncio
    async def test_duplicate_create_rejected(self):
        registry = PositionRegistry()
        await registry.create(_position())
        with pytest.raises(StateException):
            await registry.create(_position())
        assert len(registry) == 1

    @pytest.mark.asyncio
    async def test_empty_position_rejected(self):
        registry = PositionRegistry()
        with pytest.raises(StateException):
            await registry.create(_position(amount=0))

    @pytest.mark.asyncio
    async def test_get_returns_detached_copy(self):
        registry = PositionRegistry()
        await registry.create(_position())
        snapshot = registry.get(TOKEN_MINT)
        snapshot.amount = 1
        snapshot.stage_flags.add("tp1")
        record = registry.get(TOKEN_MINT)
        assert record.amount == 1000
        assert record.stage_flags == set()


class TestApplyExit:
    @pytest.mark.asyncio
    async def test_staged_exits_are_monotonic(self):
        registry = PositionRegistry()
        await registry.create(_position())

        after_tp1 = await registry.apply_exit(TOKEN_MINT, 250, stage="tp1")
        assert after_tp1.amount == 750
        assert after_tp1.status == PositionStatus.PARTIALLY_EXITED

        after_tp2 = await registry.apply_exit(TOKEN_MINT, 375, stage="tp2")
        assert after_tp2.amount == 375
        assert after_tp2.stage_flags == {"tp1", "tp2"}

        final = await registry.apply_exit(TOKEN_MINT, 375, reason=ExitReason.STOP_LOSS)
        assert final.amount == 0
        assert final.sold_amount == 1000
        assert final.status == PositionStatus.CLOSED
        assert final.exit_reason == ExitReason.STOP_LOSS
        assert not registry.has(TOKEN_MINT)
        assert len(registry.closed_positions()) == 1

    @pytest.mark.asyncio
    async def test_stage_sale_emptying_position_is_target_reached(self):
        registry = PositionRegistry()
        await registry.create(_position())
        final = await registry.apply_exit(TOKEN_MINT, 1000, stage="target")
        assert final.exit_reason == ExitReason.TARGET_REACHED

    @pytest.mark.asyncio
    async def test_oversell_rejected(self):
        registry = PositionRegistry()
        await registry.create(_position())
        with pytest.raises(StateException):
            await registry.apply_exit(TOKEN_MINT, 1001)
        with pytest.raises(StateException):
            await registry.apply_exit(TOKEN_MINT, 0)
        assert registry.get(TOKEN_MINT).amount == 1000

    @pytest.mark.asyncio
    async def test_stage_cannot_fire_twice(self):
        registry = PositionRegistry()
        await registry.create(_position())
        await registry.apply_exit(TOKEN_MINT, 250, stage="tp1")
        with pytest.raises(StateException):
            await registry.apply_exit(TOKEN_MINT, 100, stage="tp1")
        assert registry.get(TOKEN_MINT).amount == 750

    @pytest.mark.asyncio
    async def test_closed_position_cannot_change(self):
        registry = PositionRegistry()
        await registry.create(_position())
        await registry.close(TOKEN_MINT, ExitReason.MANUAL)
        with pytest.raises(StateException):
            await registry.apply_exit(TOKEN_MINT, 1)
        with pytest.raises(StateException):
            await registry.close(TOKEN_MINT, ExitReason.MANUAL)

    @pytest.mark.asyncio
    async def test_concurrent_exits_on_distinct_mints(self):
        registry = PositionRegistry()
        await registry.create(_position(TOKEN_MINT))
        await registry.create(_position(OTHER_MINT))
        await asyncio.gather(
            registry.apply_exit(TOKEN_MINT, 500, stage="tp1"),
            registry.apply_exit(OTHER_MINT, 1000, reason=ExitReason.TIMEOUT),
        )
        assert registry.get(TOKEN_MINT).amount == 500
        assert not registry.has(OTHER_MINT)

    @pytest.mark.asyncio
    async def test_concurrent_exits_on_same_mint_keep_accounting(self):
        registry = PositionRegistry()
        await registry.create(_position(amount=1000))
        await asyncio.gather(*(registry.apply_exit(TOKEN_MINT, 100) for _ in range(8)))

        p = registry.get(TOKEN_MINT)
        assert p.amount == 200
        assert p.sold_amount == 800
        assert p.initial_amount - p.amount == p.sold_amount
        assert p.status == PositionStatus.PARTIALLY_EXITED

    @pytest.mark.asyncio
    async def test_concurrent_oversell_rejects_exactly_one(self):
        registry = PositionRegistry()
        await registry.create(_position(amount=1000))
        results = await asyncio.gather(
            *(registry.apply_exit(TOKEN_MINT, 400) for _ in range(3)), return_exceptions=True
        )

        errors = [r for r in results if isinstance(r, Exception)]
        assert len(errors) == 1
        assert isinstance(errors[0], StateException)
        p = registry.get(TOKEN_MINT)
        assert p.amount == 200
        assert p.initial_amount - p.amount == p.sold_amount


class TestClosedHistory:
    @pytest.mark.asyncio
    async def test_history_is_bounded_but_count_is_total(self):
        registry = PositionRegistry(closed_history=2)
        mints = [TOKEN_MINT, OTHER_MINT, WSOL_MINT]
        for mint in mints:
            await registry.create(_position(mint))
            await registry.close(mint, ExitReason.MANUAL)

        assert [p.mint for p in registry.closed_positions()] == mints[1:]
        assert registry.closed_total == 3
        assert registry.snapshot()["closed_count"] == 3

    @pytest.mark.asyncio
    async def test_closing_releases_lock_and_mint_can_reopen(self):
        registry = PositionRegistry()
        await registry.create(_position())
        await registry.apply_exit(TOKEN_MINT, 1000, reason=ExitReason.STOP_LOSS)
        assert TOKEN_MINT not in registry._locks

        await registry.create(_position(amount=500))
        assert TOKEN_MINT in registry._locks
        assert (await registry.apply_exit(TOKEN_MINT, 100)).amount == 400


class TestSnapshot:
    @pytest.mark.asyncio
    async def test_write_snapshot(self, tmp_path):
        registry = PositionRegistry(clock=lambda: 123.0)
        await registry.create(_position())
        path = tmp_path / "data" / "positions.json"
        registry.write_snapshot(path, prices={TOKEN_MINT: 0.002})

        data = json.loads(path.read_text())
        assert data["ts"] == 123.0
        entry = data["open_positions"][0]
        assert entry["status"] == "OPEN"
        assert entry["multiplier"] == pytest.approx(2.0)
