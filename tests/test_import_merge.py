import json

import pytest
from conftest import make_adapter, make_case, make_repository, run

from casekeeper.core.models import CaseCategory
from casekeeper.services.import_merge import ImportMergeEngine, ImportStrategy, dedupe_first_seen
from casekeeper.storage.errors import ParseError


async def _repo_with_original(adapter):
    repo = make_repository(adapter)
    await repo.save(make_case("250101-1", caseDate="2025-01-01", fullName="original"))
    return repo


def test_merge_keeps_existing_record_on_id_clash(tmp_path):
    document = json.dumps(
        {
            "مصاريف": [
                {"caseId": "250101-1", "fullName": "imported", "caseDate": "2025-03-03"},
                {"caseId": "250101-2", "fullName": "new"},
            ],
            "caseCounter": 9,
        },
        ensure_ascii=False,
    )

    async def scenario():
        async with make_adapter(tmp_path) as adapter:
            repo = await _repo_with_original(adapter)
            report = await ImportMergeEngine(repo).import_document(document, "merge")
            return report, repo.state()[CaseCategory.MASAREEF], repo.counter

    report, records, counter = run(scenario())
    assert [r.case_id for r in records] == ["250101-1", "250101-2"]
    assert records[0].full_name == "original"
    assert records[1].category is CaseCategory.MASAREEF
    assert report.duplicates_dropped[CaseCategory.MASAREEF] == 1
    assert counter == 9


def test_merge_never_lowers_counter(tmp_path):
    async def scenario():
        async with make_adapter(tmp_path) as adapter:
            repo = await _repo_with_original(adapter)
            for _ in range(3):
                await repo.save(make_case(repo.next_case_id()))
            await ImportMergeEngine(repo).import_document({"سيد": [], "caseCounter": 2})
            return repo.counter

    assert run(scenario()) == 5


def test_replace_overwrites_only_provided_categories(tmp_path):
    async def scenario():
        async with make_adapter(tmp_path) as adapter:
            repo = await _repo_with_original(adapter)
            await repo.save(make_case("s-1", CaseCategory.SAYED))
            for _ in range(3):
                await repo.save(make_case(repo.next_case_id(), CaseCategory.AMM))
            document = {"masareef": [{"caseId": "x"}, {"caseId": "x"}, {"caseId": "y"}], "caseCounter": 2}
            await ImportMergeEngine(repo).import_document(document, ImportStrategy.REPLACE)
            return repo.state(), repo.counter

    state, counter = run(scenario())
    assert [r.case_id for r in state[CaseCategory.MASAREEF]] == ["x", "y"]
    assert [r.case_id for r in state[CaseCategory.SAYED]] == ["s-1"]
    assert len(state[CaseCategory.AMM]) == 3
    assert counter == 2


def test_import_is_persisted(tmp_path):
    async def first():
        async with make_adapter(tmp_path) as adapter:
            repo = make_repository(adapter)
            await ImportMergeEngine(repo).import_document({"عام": [{"caseId": "a-1"}]})

    async def second():
        async with make_adapter(tmp_path) as adapter:
            repo = make_repository(adapter)
            await repo.load()
            return repo.get("a-1").category

    run(first())
    assert run(second()) is CaseCategory.AMM


@pytest.mark.parametrize(
    "payload",
    [
        "not json at all",
        b"\xff\xfe",
        "[1, 2, 3]",
        '{"unrelated": []}',
        '{"سيد": {"caseId": "1"}}',
        '{"سيد": [{"fullName": "no id"}]}',
        '{"سيد": [], "caseCounter": "many"}',
    ],
)
def test_malformed_documents_leave_state_untouched(tmp_path, payload):
    async def scenario():
        async with make_adapter(tmp_path) as adapter:
            repo = await _repo_with_original(adapter)
            before = (repo.state(), repo.counter)
            with pytest.raises(ParseError):
                await ImportMergeEngine(repo).import_document(payload, "replace")
            stored = await adapter.get("masareefCases")
            return before, (repo.state(), repo.counter), stored

    before, after, stored = run(scenario())
    assert after == before
    assert "original" in stored


def test_unknown_strategy_is_a_parse_error(tmp_path):
    async def scenario():
        async with make_adapter(tmp_path) as adapter:
            repo = make_repository(adapter)
            with pytest.raises(ParseError):
                await ImportMergeEngine(repo).import_document({"سيد": []}, "append")

    run(scenario())


def test_dedupe_first_seen_preserves_order():
    records = [make_case(i) for i in ("b", "a", "b", "c", "a")]
    assert [r.case_id for r in dedupe_first_seen(records)] == ["b", "a", "c"]
