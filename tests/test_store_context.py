import pytest
from conftest import make_case, run, upload

from casekeeper.config import StoreConfig
from casekeeper.core.store_context import open_case_store
from casekeeper.services.repository import SaveOutcome
from casekeeper.storage.errors import ParseError


def test_open_wires_shared_repository(store_config):
    async def scenario():
        async with await open_case_store(store_config) as ctx:
            meta = await ctx.attachments.save_attachment("250101-1", upload(size=100))
            outcome = await ctx.repository.save(make_case("250101-1", documentsMetadata=[meta]))
            snapshot_id = await ctx.backups.create_snapshot()
            return ctx.adapter.secondary_active, outcome, ctx.backups.repository is ctx.repository, snapshot_id

    active, outcome, shared, snapshot_id = run(scenario())
    assert active is True
    assert outcome is SaveOutcome.INSERTED
    assert shared is True
    assert (store_config.data_dir / "blob_store.sqlite").exists()

    async def reopen():
        async with await open_case_store(store_config) as ctx:
            return ctx.repository.get("250101-1").attachments[0].size, len(await ctx.backups.list_snapshots())

    assert run(reopen()) == (100, 1)


def test_unusable_secondary_path_falls_back(tmp_path):
    data_dir = tmp_path / "data"
    (data_dir / "blob_store.sqlite").mkdir(parents=True)

    async def scenario():
        async with await open_case_store(StoreConfig(data_dir=data_dir)) as ctx:
            await ctx.repository.save(make_case("1"))
            return ctx.adapter.secondary_active, ctx.repository.counts()

    active, counts = run(scenario())
    assert active is False
    assert sum(counts.values()) == 1


def test_open_propagates_parse_errors(store_config):
    store_config.data_dir.mkdir(parents=True)
    (store_config.data_dir / "local_storage.json").write_text(
        '{"version": 1, "items": {"sayedCases": "t:[{\\"no\\": \\"id\\"}]"}}', encoding="utf-8"
    )
    config = StoreConfig(data_dir=store_config.data_dir, secondary_enabled=False)

    with pytest.raises(ParseError):
        run(open_case_store(config))
