from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from .config import StoreConfig
from .core.logging_config import setup_logging
from .core.models import AttachmentUpload, CaseCategory
from .core.store_context import CaseStoreContext, open_case_store
from .services.export import TABLE_FORMATS, export_json, export_table
from .services.import_merge import ImportStrategy
from .services.repair import find_orphan_blobs, purge_orphan_blobs
from .storage.errors import CaseStoreError, ValidationError

log = logging.getLogger(__name__)


def _category(value: str) -> CaseCategory:
    try:
        return CaseCategory.parse(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc


def _scope(value: str) -> str:
    return "all" if value == "all" else _category(value).value


async def cmd_list(ctx: CaseStoreContext, args: argparse.Namespace) -> None:
    repo = ctx.repository
    if args.search:
        records = repo.search(args.search, field=args.field, category=args.category)
    else:
        records = repo.list(args.category)
    for record in records:
        category = record.category.value if record.category else "-"
        print(f"{record.case_id}\t{category}\t{record.case_date or '-'}\t{record.full_name or ''}")


async def cmd_show(ctx: CaseStoreContext, args: argparse.Namespace) -> None:
    record = ctx.repository.get(args.case_id, args.category)
    print(json.dumps(record.to_document(), ensure_ascii=False, indent=2))


async def cmd_delete(ctx: CaseStoreContext, args: argparse.Namespace) -> None:
    outcome = await ctx.repository.delete(args.case_id, args.category)
    print(f"{args.case_id}: {outcome.value}")


async def cmd_attach(ctx: CaseStoreContext, args: argparse.Namespace) -> None:
    record = ctx.repository.get(args.case_id, args.category)
    added = []
    for path in args.files:
        upload = AttachmentUpload.from_path(path, category=args.doc_category)
        added.append(await ctx.attachments.save_attachment(record.case_id, upload))
    updated = record.model_copy(update={"attachments": [*record.attachments, *added]})
    await ctx.repository.save(updated)
    for meta in added:
        print(f"Attached {meta.name} ({meta.size} bytes) as {meta.id}")


async def cmd_export(ctx: CaseStoreContext, args: argparse.Namespace) -> None:
    if args.format == "json":
        text = export_json(ctx.repository, args.scope)
        if args.output:
            Path(args.output).write_text(text, encoding="utf-8")
            print(f"Exported to {args.output}")
        else:
            print(text)
        return
    if not args.output:
        raise CaseStoreError(f"--output is required for {args.format} export")
    export_table(ctx.repository, args.output, args.scope, fmt=args.format)
    print(f"Exported to {args.output}")


async def cmd_import(ctx: CaseStoreContext, args: argparse.Namespace) -> None:
    payload = Path(args.file).read_bytes()
    report = await ctx.importer.import_document(payload, args.strategy)
    dropped = sum(report.duplicates_dropped.values())
    print(
        f"Imported {report.total_imported} case(s) ({report.strategy.value}); "
        f"{dropped} duplicate(s) dropped; counter {report.counter_after}"
    )


async def cmd_backup_create(ctx: CaseStoreContext, args: argparse.Namespace) -> None:
    print(await ctx.backups.create_snapshot())


async def cmd_backup_list(ctx: CaseStoreContext, args: argparse.Namespace) -> None:
    for info in await ctx.backups.list_snapshots():
        state = "" if info.readable else "\tunreadable"
        print(
            f"{info.id}\t{info.created.isoformat()}\t{info.size_bytes / 1024:.2f} KB"
            f"\t{info.record_count}{state}"
        )


async def cmd_backup_restore(ctx: CaseStoreContext, args: argparse.Namespace) -> None:
    document = await ctx.backups.restore_snapshot(args.snapshot_id)
    print(f"Restored {document.record_count()} case(s) from {args.snapshot_id}")


async def cmd_backup_delete(ctx: CaseStoreContext, args: argparse.Namespace) -> None:
    removed = await ctx.backups.delete_snapshot(args.snapshot_id)
    print(f"{args.snapshot_id}: {'deleted' if removed else 'not found'}")


async def cmd_backup_prune(ctx: CaseStoreContext, args: argparse.Namespace) -> None:
    removed = await ctx.backups.prune_snapshots(args.keep)
    print(f"Removed {removed} snapshot(s)")


async def cmd_purge_orphans(ctx: CaseStoreContext, args: argparse.Namespace) -> None:
    if args.dry_run:
        for key in await find_orphan_blobs(ctx.adapter, ctx.repository):
            print(key)
        return
    removed = await purge_orphan_blobs(ctx.adapter, ctx.repository)
    print(f"Purged {removed} orphan key(s)")


async def cmd_reset(ctx: CaseStoreContext, args: argparse.Namespace) -> None:
    if not args.yes:
        raise ValidationError("reset deletes every case and attachment; pass --yes to confirm")
    removed = await ctx.repository.reset()
    print(f"Reset: {removed} case(s) removed")


async def cmd_usage(ctx: CaseStoreContext, args: argparse.Namespace) -> None:
    usage = await ctx.adapter.usage()
    print(f"primary: {usage.primary_used_chars}/{usage.primary_quota_chars} chars")
    if usage.secondary_active:
        print(f"secondary: {usage.secondary_used_bytes}/{usage.secondary_max_bytes} bytes")
    else:
        print("secondary: inactive")
    for category, count in ctx.repository.counts().items():
        print(f"{category.value}: {count}")
    print(f"counter: {ctx.repository.counter}")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser("casekeeper")
    parser.add_argument("--data-dir", type=Path, default=None)
    parser.add_argument("--verbose", "-v", action="store_true")
    sub = parser.add_subparsers(dest="cmd", required=True)

    sp = sub.add_parser("list")
    sp.add_argument("--category", type=_scope, default="all")
    sp.add_argument("--search", default="")
    sp.add_argument("--field", default="all")
    sp.set_defaults(func=cmd_list)

    sp = sub.add_parser("show")
    sp.add_argument("case_id")
    sp.add_argument("--category", type=_category, default=None)
    sp.set_defaults(func=cmd_show)

    sp = sub.add_parser("delete")
    sp.add_argument("case_id")
    sp.add_argument("--category", type=_category, required=True)
    sp.set_defaults(func=cmd_delete)

    sp = sub.add_parser("attach")
    sp.add_argument("case_id")
    sp.add_argument("files", nargs="+", type=Path)
    sp.add_argument("--category", type=_category, default=None)
    sp.add_argument(
        "--doc-category",
        default="other",
        choices=["personal", "medical", "financial", "other"],
    )
    sp.set_defaults(func=cmd_attach)

    sp = sub.add_parser("export")
    sp.add_argument("--scope", type=_scope, default="all")
    sp.add_argument("--format", choices=["json", *TABLE_FORMATS], default="json")
    sp.add_argument("--output", "-o", default=None)
    sp.set_defaults(func=cmd_export)

    sp = sub.add_parser("import")
    sp.add_argument("file", type=Path)
    sp.add_argument(
        "--strategy", choices=[s.value for s in ImportStrategy], default=ImportStrategy.MERGE.value
    )
    sp.set_defaults(func=cmd_import)

    backup = sub.add_parser("backup")
    backup_sub = backup.add_subparsers(dest="backup_cmd", required=True)
    bp = backup_sub.add_parser("create")
    bp.set_defaults(func=cmd_backup_create)
    bp = backup_sub.add_parser("list")
    bp.set_defaults(func=cmd_backup_list)
    bp = backup_sub.add_parser("restore")
    bp.add_argument("snapshot_id")
    bp.set_defaults(func=cmd_backup_restore)
    bp = backup_sub.add_parser("delete")
    bp.add_argument("snapshot_id")
    bp.set_defaults(func=cmd_backup_delete)
    bp = backup_sub.add_parser("prune")
    bp.add_argument("--keep", type=int, default=None)
    bp.set_defaults(func=cmd_backup_prune)

    sp = sub.add_parser("purge-orphans")
    sp.add_argument("--dry-run", action="store_true")
    sp.set_defaults(func=cmd_purge_orphans)

    sp = sub.add_parser("reset")
    sp.add_argument("--yes", action="store_true")
    sp.set_defaults(func=cmd_reset)

    sp = sub.add_parser("usage")
    sp.set_defaults(func=cmd_usage)

    return parser


async def _run(args: argparse.Namespace) -> None:
    config = StoreConfig.from_env(args.data_dir)
    async with await open_case_store(config) as ctx:
        await args.func(ctx, args)


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    config = StoreConfig.from_env(args.data_dir)
    setup_logging(
        console_level=logging.DEBUG if args.verbose else logging.WARNING,
        log_dir=config.data_dir / "logs",
    )
    try:
        asyncio.run(_run(args))
    except (CaseStoreError, OSError, ValueError) as exc:
        log.debug("Command %s failed", args.cmd, exc_info=True)
        print(f"error: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
