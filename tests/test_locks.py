"""Tests for the per-session lock table."""

import asyncio

import pytest

from hearth.context.locks import KeyedLockTable


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


@pytest.mark.asyncio
async def test_same_key_is_serialized():
    locks = KeyedLockTable()
    order: list[str] = []

    async def worker(name: str):
        async with locks.hold("u1:s1"):
            order.append(f"{name}-in")
            await asyncio.sleep(0.01)
            order.append(f"{name}-out")

    await asyncio.gather(worker("a"), worker("b"))
    assert order in (
        ["a-in", "a-out", "b-in", "b-out"],
        ["b-in", "b-out", "a-in", "a-out"],
    )


@pytest.mark.asyncio
async def test_different_keys_do_not_block():
    locks = KeyedLockTable()
    async with locks.hold("u1:s1"):
        # Would deadlock if keys shared a lock
        await asyncio.wait_for(_enter(locks, "u1:s2"), timeout=0.5)
    assert not locks.is_locked("u1:s1")


async def _enter(locks: KeyedLockTable, key: str) -> None:
    async with locks.hold(key):
        pass


@pytest.mark.asyncio
async def test_sweep_removes_only_idle_entries():
    clock = FakeClock()
    locks = KeyedLockTable(idle_seconds=60, clock=clock)
    await _enter(locks, "old")
    clock.now = 100
    await _enter(locks, "fresh")
    assert len(locks) == 2

    assert locks.sweep() == 1
    assert len(locks) == 1


@pytest.mark.asyncio
async def test_sweep_never_drops_a_held_lock():
    clock = FakeClock()
    locks = KeyedLockTable(idle_seconds=0, clock=clock)
    async with locks.hold("busy"):
        clock.now = 1000
        assert locks.sweep() == 0
        assert locks.is_locked("busy")
