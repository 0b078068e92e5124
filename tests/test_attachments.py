import asyncio

import pytest
from conftest import MIB, failing_opener, make_adapter, payload, run, upload

from casekeeper.core.models import AttachmentMetadata, AttachmentUpload
from casekeeper.services.attachments import AttachmentStore, file_kind
from casekeeper.storage.errors import ValidationError


def test_two_one_mib_attachments_load_back_identical(tmp_path):
    first, second = upload("a.png"), upload("b.pdf", mime="application/pdf")

    async def scenario():
        async with make_adapter(tmp_path) as adapter:
            store = AttachmentStore(adapter)
            metas = [
                await store.save_attachment("250101-1", first),
                await store.save_attachment("250101-1", second),
            ]
            loaded = await store.load_attachments(metas)
            return metas, loaded, await store.attachment_ids("250101-1")

    metas, loaded, ids = run(scenario())
    assert [m.data_key for m in metas] == [f"doc_data_250101-1_{m.id}" for m in metas]
    assert [item.data for item in loaded] == [first.data, second.data]
    assert ids == [m.id for m in metas]
    assert metas[0].kind == "images"
    assert metas[1].kind == "documents"
    assert metas[0].size == MIB


def test_primary_only_store_still_holds_attachments(tmp_path):
    up = upload(size=MIB)

    async def scenario():
        async with make_adapter(tmp_path, opener=failing_opener) as adapter:
            store = AttachmentStore(adapter)
            meta = await store.save_attachment("250101-1", up)
            return (await store.load_attachments([meta]))[0]

    assert run(scenario()).data == up.data


def test_oversized_file_is_rejected_before_any_write(tmp_path):
    async def scenario():
        async with make_adapter(tmp_path) as adapter:
            store = AttachmentStore(adapter)
            with pytest.raises(ValidationError):
                await store.save_attachment("250101-1", upload(size=6 * MIB))
            return await adapter.list_keys()

    assert run(scenario()) == []


def test_file_at_the_limit_is_accepted(tmp_path):
    async def scenario():
        async with make_adapter(tmp_path) as adapter:
            meta = await AttachmentStore(adapter).save_attachment("1", upload(size=5 * MIB))
            return meta.size

    assert run(scenario()) == 5 * MIB


def test_empty_file_name_is_rejected(tmp_path):
    async def scenario():
        async with make_adapter(tmp_path) as adapter:
            with pytest.raises(ValidationError):
                await AttachmentStore(adapter).save_attachment(
                    "1", AttachmentUpload(name="", data=b"x")
                )
            return await adapter.list_keys()

    assert run(scenario()) == []


@pytest.mark.parametrize("secondary", [True, False])
def test_empty_file_round_trips(tmp_path, secondary):
    async def scenario():
        async with make_adapter(tmp_path, secondary=secondary) as adapter:
            store = AttachmentStore(adapter)
            meta = await store.save_attachment("1", AttachmentUpload(name="empty.txt", data=b""))
            return meta, (await store.load_attachments([meta]))[0]

    meta, loaded = run(scenario())
    assert meta.size == 0
    assert not loaded.missing
    assert loaded.data == b""


def test_concurrent_saves_keep_every_index_entry(tmp_path):
    async def scenario():
        async with make_adapter(tmp_path) as adapter:
            store = AttachmentStore(adapter)
            metas = await asyncio.gather(
                *(store.save_attachment("1", upload(f"f{i}.png", size=100)) for i in range(3))
            )
            return metas, await store.attachment_ids("1")

    metas, ids = run(scenario())
    assert len(ids) == 3
    assert sorted(ids) == sorted(m.id for m in metas)


def test_concurrent_saves_respect_file_limit(tmp_path):
    async def scenario():
        async with make_adapter(tmp_path) as adapter:
            store = AttachmentStore(adapter, max_files_per_case=2)
            results = await asyncio.gather(
                *(store.save_attachment("1", upload(size=100)) for _ in range(3)),
                return_exceptions=True,
            )
            return results, await store.attachment_ids("1"), await adapter.list_keys("doc_data_")

    results, ids, blob_keys = run(scenario())
    assert sum(isinstance(r, ValidationError) for r in results) == 1
    assert len(ids) == 2
    assert len(blob_keys) == 2


def test_per_case_file_limit(tmp_path):
    async def scenario():
        async with make_adapter(tmp_path) as adapter:
            store = AttachmentStore(adapter, max_files_per_case=2)
            await store.save_attachment("1", upload(size=10))
            await store.save_attachment("1", upload(size=10))
            with pytest.raises(ValidationError):
                await store.save_attachment("1", upload(size=10))
            # other cases are unaffected
            await store.save_attachment("2", upload(size=10))
            return await store.attachment_ids("1")

    assert len(run(scenario())) == 2


def test_missing_blob_is_reported_absent(tmp_path):
    ghost = AttachmentMetadata(id="doc_1_x", name="gone.png", size=3, dataKey="doc_data_1_doc_1_x")

    async def scenario():
        async with make_adapter(tmp_path) as adapter:
            store = AttachmentStore(adapter)
            real = await store.save_attachment("1", upload(size=100))
            return await store.load_attachments([real, ghost])

    present, absent = run(scenario())
    assert not present.missing
    assert absent.missing
    assert absent.data is None


def test_cascade_delete_is_idempotent(tmp_path):
    async def scenario():
        async with make_adapter(tmp_path) as adapter:
            store = AttachmentStore(adapter)
            metas = [await store.save_attachment("1", upload(size=100)) for _ in range(2)]
            keep = await store.save_attachment("2", upload(size=100))
            first = await store.delete_attachments_for_case("1", metas)
            second = await store.delete_attachments_for_case("1", metas)
            loaded = await store.load_attachments(metas)
            return first, second, loaded, await adapter.list_keys(), keep

    first, second, loaded, keys, keep = run(scenario())
    assert (first, second) == (2, 0)
    assert all(item.missing for item in loaded)
    assert keys == sorted([keep.data_key, "docs_list_2"])


def test_cascade_uses_side_index_when_metadata_is_stale(tmp_path):
    async def scenario():
        async with make_adapter(tmp_path) as adapter:
            store = AttachmentStore(adapter)
            await store.save_attachment("1", upload(size=100))
            removed = await store.delete_attachments_for_case("1", [])
            return removed, await adapter.list_keys()

    assert run(scenario()) == (1, [])


def test_delete_single_attachment_updates_index(tmp_path):
    async def scenario():
        async with make_adapter(tmp_path) as adapter:
            store = AttachmentStore(adapter)
            a = await store.save_attachment("1", upload(size=10))
            b = await store.save_attachment("1", upload(size=10))
            await store.delete_attachment("1", a)
            return await store.attachment_ids("1"), b.id

    ids, remaining = run(scenario())
    assert ids == [remaining]


def test_legacy_data_url_payloads_decode_to_bytes(tmp_path):
    meta = AttachmentMetadata(id="doc_1", name="note.txt", size=2, dataKey="doc_data_1_doc_1")

    async def scenario():
        async with make_adapter(tmp_path) as adapter:
            await adapter.put(meta.data_key, "data:text/plain;base64,aGk=")
            return await AttachmentStore(adapter).load_attachments([meta])

    assert run(scenario())[0].data == b"hi"


@pytest.mark.parametrize(
    "mime,name,kind",
    [
        ("image/jpeg", "photo.jpg", "images"),
        ("application/pdf", "report.pdf", "documents"),
        ("application/vnd.openxmlformats-officedocument.wordprocessingml.document", "a.docx", "word"),
        ("text/csv", "sheet.csv", "excel"),
        ("application/vnd.openxmlformats-officedocument.spreadsheetml.sheet", "book.xlsx", "excel"),
        ("application/vnd.ms-excel", "", "excel"),
        ("text/plain", "notes.txt", "text"),
        ("application/zip", "bundle.zip", "other"),
        ("image/svg+xml", "logo.svg", "images"),
    ],
)
def test_file_kind(mime, name, kind):
    assert file_kind(mime, name) == kind


def test_payload_helper_is_random():
    assert payload(16) != payload(16)
