from conftest import make_adapter, make_case, make_repository, run, upload

from casekeeper.services.repair import find_orphan_blobs, purge_orphan_blobs


def test_orphans_are_found_and_purged(tmp_path):
    async def scenario():
        async with make_adapter(tmp_path) as adapter:
            repo = make_repository(adapter)
            live = await repo.attachments.save_attachment("1", upload(size=50))
            await repo.save(make_case("1", documentsMetadata=[live]))
            # attachment stored but the case was never saved
            stray = await repo.attachments.save_attachment("ghost", upload(size=50))
            found = await find_orphan_blobs(adapter, repo)
            removed = await purge_orphan_blobs(adapter, repo)
            return live, stray, found, removed, await find_orphan_blobs(adapter, repo), await adapter.get(
                live.data_key
            )

    live, stray, found, removed, after, live_blob = run(scenario())
    assert found == sorted([stray.data_key, "docs_list_ghost"])
    assert removed == 2
    assert after == []
    assert live_blob is not None
