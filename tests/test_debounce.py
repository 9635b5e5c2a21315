from __future__ import annotations

import asyncio
import logging

import pytest

from telegram_orchestrator.services.debounce import DebounceMap

DELAY = 0.1


class TestDebounceMap:
    """Cancel-and-restart timers."""

    def test_burst_collapses_into_one_call(self) -> None:
        async def scenario() -> list[str]:
            calls: list[str] = []
            timers: DebounceMap[str] = DebounceMap(DELAY)

            async def action() -> None:
                calls.append("fired")

            for _ in range(5):
                timers.schedule("ann", action)
                await asyncio.sleep(DELAY / 10)
            await asyncio.sleep(DELAY * 3)
            return calls

        assert asyncio.run(scenario()) == ["fired"]

    def test_spaced_events_fire_twice(self) -> None:
        async def scenario() -> int:
            calls: list[int] = []
            timers: DebounceMap[str] = DebounceMap(DELAY)

            async def action() -> None:
                calls.append(1)

            timers.schedule("ann", action)
            await asyncio.sleep(DELAY * 3)
            timers.schedule("ann", action)
            await asyncio.sleep(DELAY * 3)
            return len(calls)

        assert asyncio.run(scenario()) == 2

    def test_keys_are_independent(self) -> None:
        async def scenario() -> set[str]:
            fired: set[str] = set()
            timers: DebounceMap[str] = DebounceMap(DELAY)

            def action_for(key: str):
                async def action() -> None:
                    fired.add(key)
                return action

            timers.schedule("ann", action_for("ann"))
            timers.schedule("bob", action_for("bob"))
            await asyncio.sleep(DELAY * 3)
            return fired

        assert asyncio.run(scenario()) == {"ann", "bob"}

    def test_handle_consumed_after_firing(self) -> None:
        async def scenario() -> tuple[bool, bool, int]:
            timers: DebounceMap[str] = DebounceMap(DELAY)

            async def action() -> None:
                pass

            timers.schedule("ann", action)
            pending_before = timers.is_pending("ann")
            await asyncio.sleep(DELAY * 3)
            return pending_before, timers.is_pending("ann"), len(timers)

        assert asyncio.run(scenario()) == (True, False, 0)

    def test_cancel_prevents_action(self) -> None:
        async def scenario() -> tuple[bool, list[int]]:
            calls: list[int] = []
            timers: DebounceMap[str] = DebounceMap(DELAY)

            async def action() -> None:
                calls.append(1)

            timers.schedule("ann", action)
            cancelled = timers.cancel("ann")
            await asyncio.sleep(DELAY * 3)
            return cancelled, calls

        assert asyncio.run(scenario()) == (True, [])

    def test_cancel_unknown_key(self) -> None:
        timers: DebounceMap[str] = DebounceMap(DELAY)
        assert timers.cancel("nobody") is False

    def test_failing_action_is_logged(self, caplog: pytest.LogCaptureFixture) -> None:
        async def scenario() -> list[int]:
            calls: list[int] = []
            timers: DebounceMap[str] = DebounceMap(DELAY)

            async def broken() -> None:
                raise RuntimeError("generation down")

            async def working() -> None:
                calls.append(1)

            timers.schedule("ann", broken)
            await asyncio.sleep(DELAY * 3)
            timers.schedule("ann", working)
            await asyncio.sleep(DELAY * 3)
            return calls

        with caplog.at_level(logging.ERROR, logger="telegram_orchestrator.services.debounce"):
            assert asyncio.run(scenario()) == [1]
        assert "generation down" in caplog.text

    def test_custom_spawn_is_used(self) -> None:
        async def scenario() -> int:
            spawned: list[asyncio.Task] = []

            def spawn(coro) -> asyncio.Task:
                task = asyncio.create_task(coro)
                spawned.append(task)
                return task

            timers: DebounceMap[str] = DebounceMap(DELAY, spawn=spawn)

            async def action() -> None:
                pass

            timers.schedule("ann", action)
            timers.schedule("ann", action)
            await asyncio.gather(*spawned, return_exceptions=True)
            return len(spawned)

        assert asyncio.run(scenario()) == 2
