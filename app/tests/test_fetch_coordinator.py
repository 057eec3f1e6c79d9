"""Tests for single-flight refresh coordination."""

from __future__ import annotations

import asyncio

import pytest

from app.services.fetch_coordinator import RefreshCoordinator

pytest_plugins = ("pytest_asyncio",)


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_run() -> None:
    coordinator = RefreshCoordinator()
    release = asyncio.Event()
    runs = 0

    async def refresh() -> str:
        nonlocal runs
        runs += 1
        await release.wait()
        return "done"

    first = asyncio.create_task(coordinator.execute("playlist-1", refresh))
    second = asyncio.create_task(coordinator.execute("playlist-1", refresh))
    await asyncio.sleep(0)
    assert coordinator.is_refreshing("playlist-1")

    release.set()
    assert await asyncio.gather(first, second) == ["done", "done"]
    assert runs == 1
    assert not coordinator.is_refreshing("playlist-1")


@pytest.mark.asyncio
async def test_different_keys_run_independently() -> None:
    coordinator = RefreshCoordinator()
    seen: list[str] = []

    async def refresh_for(key: str):
        async def refresh() -> str:
            seen.append(key)
            return key
        return await coordinator.execute(key, refresh)

    results = await asyncio.gather(refresh_for("a"), refresh_for("b"))

    assert results == ["a", "b"]
    assert sorted(seen) == ["a", "b"]


@pytest.mark.asyncio
async def test_sequential_calls_run_again() -> None:
    coordinator = RefreshCoordinator()
    runs = 0

    async def refresh() -> int:
        nonlocal runs
        runs += 1
        return runs

    assert await coordinator.execute("playlist-1", refresh) == 1
    assert await coordinator.execute("playlist-1", refresh) == 2


@pytest.mark.asyncio
async def test_failure_is_shared_and_released() -> None:
    coordinator = RefreshCoordinator()

    async def refresh() -> None:
        await asyncio.sleep(0)
        raise RuntimeError("upstream down")

    results = await asyncio.gather(
        coordinator.execute("playlist-1", refresh),
        coordinator.execute("playlist-1", refresh),
        return_exceptions=True,
    )

    assert all(isinstance(result, RuntimeError) for result in results)
    assert not coordinator.is_refreshing("playlist-1")


@pytest.mark.asyncio
async def test_different_variant_waits_for_running_refresh() -> None:
    coordinator = RefreshCoordinator()
    release = asyncio.Event()
    order: list[str] = []

    async def slow() -> str:
        order.append("slow started")
        await release.wait()
        order.append("slow finished")
        return "slow"

    async def forced() -> str:
        order.append("forced started")
        return "forced"

    first = asyncio.create_task(coordinator.execute("playlist-1", slow, variant=False))
    await asyncio.sleep(0)
    second = asyncio.create_task(coordinator.execute("playlist-1", forced, variant=True))
    await asyncio.sleep(0)
    assert order == ["slow started"]

    release.set()
    assert await asyncio.gather(first, second) == ["slow", "forced"]
    assert order == ["slow started", "slow finished", "forced started"]
    assert not coordinator.is_refreshing("playlist-1")


@pytest.mark.asyncio
async def test_equal_variants_share_one_run() -> None:
    coordinator = RefreshCoordinator()
    release = asyncio.Event()
    runs = 0

    async def refresh() -> int:
        nonlocal runs
        runs += 1
        await release.wait()
        return runs

    variant = ("http://guide.test/epg.xml", True)
    first = asyncio.create_task(coordinator.execute("playlist-1", refresh, variant=variant))
    second = asyncio.create_task(coordinator.execute("playlist-1", refresh, variant=variant))
    await asyncio.sleep(0)

    release.set()
    assert await asyncio.gather(first, second) == [1, 1]
    assert runs == 1
