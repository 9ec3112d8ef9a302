#!/usr/bin/env python3
"""Import a board snapshot file into the configured store.

Usage:
  python scripts/import_snapshot.py backup.json [--replace] [--export out.json]
      [--report]
"""
from __future__ import annotations

import argparse
import asyncio
from pathlib import Path
import sys

# Ensure src is on the import path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import orjson  # noqa: E402
import structlog  # noqa: E402

from GridFlow.config import load_settings  # type: ignore  # noqa: E402
from GridFlow.db import dispose_engine  # type: ignore  # noqa: E402
from GridFlow.errors import GridFlowError  # type: ignore  # noqa: E402
from GridFlow.exporter import dumps_snapshot, export_snapshot, loads_snapshot  # type: ignore  # noqa: E402
from GridFlow.importer import import_snapshot  # type: ignore  # noqa: E402
from GridFlow.logging import redact_settings, setup_logging  # type: ignore  # noqa: E402
from GridFlow.migration import migrate  # type: ignore  # noqa: E402
from GridFlow.store import Store  # type: ignore  # noqa: E402
from GridFlow.validator import integrity_report  # type: ignore  # noqa: E402


async def _run(args: argparse.Namespace, settings) -> dict:
    raw = loads_snapshot(args.path.read_bytes())
    out: dict = {}
    try:
        if args.report:
            out["report"] = integrity_report(migrate(raw)).model_dump(
                exclude={"validation": {"snapshot"}}
            )
        store = Store(settings=settings)
        stats = await import_snapshot(raw, store, replace=args.replace, settings=settings)
        out["stats"] = stats.model_dump()
        if args.export:
            args.export.write_bytes(dumps_snapshot(await export_snapshot(store), indent=True))
            out["exported_to"] = str(args.export)
    finally:
        await dispose_engine()
    return out


def main() -> int:
    ap = argparse.ArgumentParser(description="Import a board snapshot (any known version)")
    ap.add_argument("path", type=Path)
    ap.add_argument("--replace", action="store_true", help="clear the store before writing")
    ap.add_argument("--export", type=Path, default=None, help="write the resulting snapshot here")
    ap.add_argument("--report", action="store_true", help="include an integrity report")
    args = ap.parse_args()

    if not args.path.exists():
        print(f"Error: snapshot not found: {args.path}")
        return 2

    settings = load_settings()
    setup_logging(settings)
    structlog.get_logger().info("cli.settings", **redact_settings(settings))
    try:
        summary = asyncio.run(_run(args, settings))
    except orjson.JSONDecodeError as exc:
        print(f"Invalid JSON: {exc}")
        return 2
    except GridFlowError as exc:
        print(f"{type(exc).__name__}: {exc}")
        return 1

    print("=== Import Summary ===")
    print(orjson.dumps(summary, option=orjson.OPT_INDENT_2).decode())
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
