import asyncio

from conftest import make_adapter, make_case, make_repository, run

from casekeeper.services.autosave import AutosaveTimer
from casekeeper.services.repository import SaveOutcome


def test_timer_saves_draft_periodically_until_stopped(tmp_path):
    async def scenario():
        async with make_adapter(tmp_path) as adapter:
            repo = make_repository(adapter)
            timer = AutosaveTimer(repo, lambda: make_case("draft-1", fullName="typing"), interval=0.01)
            assert timer.start() is True
            await asyncio.sleep(0.2)
            await timer.stop()
            saves = timer.saves
            await asyncio.sleep(0.05)
            return saves, timer.saves, timer.running, repo.counts()

    saves, later, running, counts = run(scenario())
    assert saves >= 1
    assert later == saves
    assert running is False
    assert sum(counts.values()) == 1


def test_stop_waits_for_in_flight_save(tmp_path):
    async def scenario():
        async with make_adapter(tmp_path) as adapter:
            repo = make_repository(adapter)
            timer = AutosaveTimer(repo, lambda: make_case("draft-1"), interval=0.01)
            original_put_many = adapter.put_many
            started = asyncio.Event()

            async def slow_put_many(entries):
                started.set()
                await asyncio.sleep(0.05)
                await original_put_many(entries)

            adapter.put_many = slow_put_many
            timer.start()
            await started.wait()
            await timer.stop()
            return await adapter.get("masareefCases")

    assert "draft-1" in run(scenario())


def test_disabled_autosave_does_not_start(tmp_path):
    async def scenario():
        async with make_adapter(tmp_path) as adapter:
            repo = make_repository(adapter)
            await repo.save_settings({"autoSave": "disabled"})
            timer = AutosaveTimer(repo, lambda: make_case("x"))
            started = timer.start()
            await timer.stop()
            return started, timer.running

    assert run(scenario()) == (False, False)


def test_fire_skips_missing_and_invalid_drafts(tmp_path):
    drafts = [None, {"fullName": "no id"}, make_case("ok")]

    async def scenario():
        async with make_adapter(tmp_path) as adapter:
            timer = AutosaveTimer(make_repository(adapter), lambda: drafts.pop(0))
            return [await timer.fire() for _ in range(3)], timer.saves

    outcomes, saves = run(scenario())
    assert outcomes == [None, None, SaveOutcome.INSERTED]
    assert saves == 1


def test_restart_uses_settings_interval(tmp_path):
    async def scenario():
        async with make_adapter(tmp_path) as adapter:
            repo = make_repository(adapter)
            await repo.save_settings({"autoSaveInterval": 30})
            timer = AutosaveTimer(repo, lambda: None)
            timer.start()
            default_interval = timer.interval
            await timer.restart(interval=0.5)
            running = timer.running
            await timer.stop()
            return default_interval, timer.interval, running

    assert run(scenario()) == (30.0, 0.5, True)
