import asyncio
import random
from dataclasses import replace

import pytest

from solana_volume_bot_bundle.volume_bot.models import TradeOutcome
from solana_volume_bot_bundle.volume_bot.registry import RuntimeRegistry
from solana_volume_bot_bundle.volume_bot.scheduler import TradeLoopScheduler, stagger_delays
from solana_volume_bot_bundle.volume_bot.utils_exec import VolumeBotSettings

from .conftest import make_config


class StubEngine:
    def __init__(self, duration=0.005):
        self.duration = duration
        self.calls = []
        self.active = {}
        self.max_active = {}
        self.hook = None

    async def execute_trade(self, config, wallet_id, *, require_buy_first):
        self.calls.append((wallet_id, require_buy_first))
        self.active[wallet_id] = self.active.get(wallet_id, 0) + 1
        self.max_active[wallet_id] = max(self.max_active.get(wallet_id, 0), self.active[wallet_id])
        try:
            await asyncio.sleep(self.duration)
            if self.hook is not None:
                result = self.hook(wallet_id, len(self.calls))
                if result is not None:
                    return result
        finally:
            self.active[wallet_id] -= 1
        return TradeOutcome(success=True, wallet_id=wallet_id, trade_type="buy")


@pytest.fixture
def loop_rig(fast_settings):
    engine = StubEngine()
    registry = RuntimeRegistry()
    config = make_config(min_interval_s=0.01, max_interval_s=0.02)
    configs = {config.id: config}
    scheduler = TradeLoopScheduler(engine, registry, configs.get, fast_settings, rng=random.Random(11))
    return engine, registry, configs, config, scheduler


def test_stagger_delays_strictly_increase():
    settings = VolumeBotSettings()
    for seed in range(50):
        delays = stagger_delays(10, settings, random.Random(seed))
        assert all(b > a for a, b in zip(delays, delays[1:]))
        assert settings.stagger_base_s[0] <= delays[0] <= settings.stagger_base_s[1]


@pytest.mark.asyncio
async def test_at_most_one_execution_per_wallet(loop_rig):
    engine, registry, configs, config, scheduler = loop_rig
    engine.duration = 0.02
    wallets = ["w1", "w2", "w3"]
    registry.mark_running(config.id, wallets)
    scheduler.arm_group(config.id, wallets)
    try:
        for _ in range(15):
            await asyncio.sleep(0.01)
            # aggressive re-arming, as a watchdog might do
            for w in wallets:
                scheduler.arm(config.id, w, 0.0)
        await asyncio.sleep(0.05)
    finally:
        await scheduler.shutdown()

    assert set(engine.max_active) == set(wallets)
    assert all(v == 1 for v in engine.max_active.values())


@pytest.mark.asyncio
async def test_require_buy_first_clears_after_first_successful_buy(loop_rig):
    engine, registry, configs, config, scheduler = loop_rig
    registry.mark_running(config.id, ["w1"])
    scheduler.arm_group(config.id, ["w1"])
    try:
        await asyncio.sleep(0.15)
    finally:
        await scheduler.shutdown()

    flags = [flag for _, flag in engine.calls]
    assert len(flags) >= 2
    assert flags[0] is True
    assert not any(flags[1:])


@pytest.mark.asyncio
async def test_failed_attempt_does_not_kill_the_loop(loop_rig):
    engine, registry, configs, config, scheduler = loop_rig

    def hook(wallet_id, n):
        if n == 1:
            raise RuntimeError("boom")
        return None

    engine.hook = hook
    registry.mark_running(config.id, ["w1"])
    scheduler.arm_group(config.id, ["w1"])
    try:
        await asyncio.sleep(0.15)
        state = scheduler.get_state(config.id, "w1")
        assert len(engine.calls) >= 2
        # the flag was released even though the first attempt raised
        assert engine.calls[1][1] is True
    finally:
        await scheduler.shutdown()
    assert state.executing is False


@pytest.mark.asyncio
async def test_interval_edit_applies_on_next_reschedule(loop_rig):
    engine, registry, configs, config, scheduler = loop_rig

    def hook(wallet_id, n):
        if n == 1:
            configs[config.id] = replace(config, min_interval_s=30.0, max_interval_s=30.0)
        return None

    engine.hook = hook
    registry.mark_running(config.id, ["w1"])
    scheduler.arm_group(config.id, ["w1"])
    try:
        await asyncio.sleep(0.2)
    finally:
        await scheduler.shutdown()
    assert len(engine.calls) == 1


@pytest.mark.asyncio
async def test_cancel_group_is_idempotent(loop_rig):
    engine, registry, configs, config, scheduler = loop_rig
    registry.mark_running(config.id, ["w1", "w2"])
    scheduler.arm_group(config.id, ["w1", "w2"])
    tasks = [s.task for s in scheduler.group_states(config.id)]

    scheduler.cancel_group(config.id)
    assert scheduler.cancel_group(config.id) == []
    scheduler.cancel_wallet(config.id, "w1")

    await asyncio.gather(*tasks, return_exceptions=True)
    assert scheduler.group_states(config.id) == []
    assert all(t.done() for t in tasks)
    assert engine.calls == []


@pytest.mark.asyncio
async def test_loop_ends_once_group_stops_running(loop_rig):
    engine, registry, configs, config, scheduler = loop_rig
    registry.mark_running(config.id, ["w1"])
    scheduler.arm_group(config.id, ["w1"])
    state = scheduler.get_state(config.id, "w1")
    await asyncio.sleep(0.05)
    registry.mark_stopping(config.id)
    await asyncio.wait_for(state.task, timeout=1.0)
    calls = len(engine.calls)
    await asyncio.sleep(0.05)
    assert len(engine.calls) == calls


@pytest.mark.asyncio
async def test_missing_signer_excludes_wallet(loop_rig):
    engine, registry, configs, config, scheduler = loop_rig
    engine.hook = lambda wallet_id, n: TradeOutcome(success=False, wallet_id=wallet_id, signer_missing=True)
    registry.mark_running(config.id, ["w1", "w2"])
    scheduler.arm(config.id, "w1", 0.0)
    try:
        await asyncio.sleep(0.1)
    finally:
        await scheduler.shutdown()
    rt = registry.get(config.id)
    assert rt.wallet_ids == ["w2"]
    assert rt.unsignable_wallet_ids == ["w1"]
    assert len(engine.calls) == 1


@pytest.mark.asyncio
async def test_drain_waits_for_in_flight_execution(loop_rig):
    engine, registry, configs, config, scheduler = loop_rig
    engine.duration = 0.1
    registry.mark_running(config.id, ["w1"])
    scheduler.arm(config.id, "w1", 0.0)
    await asyncio.sleep(0.03)
    assert scheduler.get_state(config.id, "w1").executing

    in_flight = scheduler.cancel_group(config.id)
    assert len(in_flight) == 1
    await scheduler.drain(in_flight)
    assert all(t.done() for t in in_flight)
    assert engine.active["w1"] == 0


@pytest.mark.asyncio
async def test_arm_is_refused_unless_group_is_running(loop_rig):
    engine, registry, configs, config, scheduler = loop_rig
    assert scheduler.arm(config.id, "w1", 0.0) is None

    registry.mark_running(config.id, ["w1"])
    registry.mark_stopping(config.id)
    assert scheduler.arm(config.id, "w1", 0.0) is None
    assert scheduler.arm_group(config.id, ["w1"]) and scheduler.group_states(config.id) == []

    await asyncio.sleep(0.02)
    assert engine.calls == []
