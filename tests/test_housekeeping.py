"""Tests for the periodic store sweeper."""

import asyncio

import pytest

from taleweaver.orchestrator.state import TaskKind, TaskStatus
from taleweaver.schemas.task import Task
from taleweaver.store.housekeeping import Housekeeper


def test_sweep_once_counts_both_stores(store, ledger, clock):
    store.create_if_absent("s1")
    ledger.create(Task(id="t1", session_id="s1", kind=TaskKind.SCENE_IMAGES))
    ledger.patch("t1", status=TaskStatus.DONE)

    clock.advance(4000)
    assert Housekeeper(store, ledger).sweep_once() == {"sessions": 1, "tasks": 1}


@pytest.mark.asyncio
async def test_run_sweeps_every_interval(store, ledger, clock):
    sleeps = []

    async def fake_sleep(seconds: float) -> None:
        sleeps.append(seconds)
        if len(sleeps) == 3:
            raise asyncio.CancelledError
        clock.advance(seconds)

    store.create_if_absent("s1")
    keeper = Housekeeper(store, ledger, interval_seconds=700, sleep=fake_sleep)

    with pytest.raises(asyncio.CancelledError):
        await keeper.run()

    assert sleeps == [700, 700, 700]
    assert len(store) == 0
