"""Tests for the periodic level sampler."""
import asyncio

import pytest

from voice_agent.audio.sampler import LevelSampler


def test_tick_delivers_output_then_input():
    calls = []
    sampler = LevelSampler(
        input_source=lambda: 0.3,
        on_input_level=lambda level: calls.append(("input", level)),
        output_source=lambda: 0.7,
        on_output_level=lambda level: calls.append(("output", level)),
        interval_ms=10,
    )

    sampler.tick()

    assert calls == [("output", 0.7), ("input", 0.3)]
    assert sampler.ticks == 1


def test_tick_without_output_meter():
    levels = []
    sampler = LevelSampler(lambda: 0.1, levels.append, interval_ms=10)
    sampler.tick()
    sampler.tick()
    assert levels == [0.1, 0.1]


@pytest.mark.asyncio
async def test_runs_until_stopped():
    """Test the sampler ticks on its own without a rendering loop."""
    levels = []
    sampler = LevelSampler(lambda: 0.5, levels.append, interval_ms=1)

    sampler.start()
    sampler.start()
    assert sampler.running
    await asyncio.sleep(0.05)
    await sampler.stop()

    assert not sampler.running
    assert len(levels) >= 2
    count = len(levels)
    await asyncio.sleep(0.02)
    assert len(levels) == count


@pytest.mark.asyncio
async def test_stop_without_start():
    sampler = LevelSampler(lambda: 0.0, lambda level: None)
    await sampler.stop()
    assert not sampler.running
    assert sampler.ticks == 0


@pytest.mark.asyncio
async def test_callback_error_stops_sampler():
    def boom(level):
        raise RuntimeError("meter gone")

    sampler = LevelSampler(lambda: 0.0, boom, interval_ms=1)
    sampler.start()
    await asyncio.sleep(0.01)

    assert not sampler.running
    await sampler.stop()
