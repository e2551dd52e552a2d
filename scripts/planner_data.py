# =============================================================================
# scripts/planner_data.py
# Command-line maintenance for the local PlannerPro store
# =============================================================================
"""
Usage:
    python scripts/planner_data.py status
    python scripts/planner_data.py export --out backup.json
    python scripts/planner_data.py import backup.json
    python scripts/planner_data.py flush
    python scripts/planner_data.py backup
"""

from __future__ import annotations
import asyncio
import json
import sys
from pathlib import Path

project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from planner_core.config import load_config
from planner_core.errors import PlannerError, RemoteUnavailableError
from planner_core.logging import setup_logging
from planner_core.offline.context import AppContext, build_context


# =============================================================================
# COMMANDS
# =============================================================================

async def cmd_status(context: AppContext, args) -> int:
    status = context.data_service.get_status()
    info = await context.data_service.get_storage_info()
    print(f"Connection : {status['connection']['status']}")
    print(f"Backend    : {status['backend']}{' (degraded)' if status['degraded'] else ''}")
    print(f"Pending    : {status['pending_sync']}")
    for collection, count in info["local"]["counts"].items():
        print(f"  {collection:<11}{count}")
    return 0


async def cmd_export(context: AppContext, args) -> int:
    data = await context.data_service.export_data()
    text = json.dumps(data, indent=2)
    if args.out:
        Path(args.out).write_text(text, encoding="utf-8")
        print(f"Exported to {args.out}")
    else:
        print(text)
    return 0


async def cmd_import(context: AppContext, args) -> int:
    data = json.loads(Path(args.file).read_text(encoding="utf-8"))
    counts = await context.data_service.import_data(data)
    for collection, count in counts.items():
        print(f"Imported {count} {collection}")
    return 0


async def cmd_flush(context: AppContext, args) -> int:
    if not await context.remote.health_check():
        raise RemoteUnavailableError(
            "API is not reachable; queued writes were kept",
            endpoint="/health",
        )
    report = await context.sync_engine.flush()
    print(f"Applied {report.applied}, remaining {report.remaining}")
    if report.halted:
        print(f"Stopped: {report.error}")
        return 1
    return 0


async def cmd_backup(context: AppContext, args) -> int:
    key = await context.data_service.create_auto_backup(context.config.max_backups)
    print(f"Backup written to slot {key}")
    return 0


COMMANDS = {
    "status": cmd_status,
    "export": cmd_export,
    "import": cmd_import,
    "flush": cmd_flush,
    "backup": cmd_backup,
}


async def run(args) -> int:
    config = load_config()
    setup_logging(args.log_level or config.log_level, log_to_file=config.log_to_file)
    context = await build_context(config)
    await context.start(monitor=False)
    try:
        return await COMMANDS[args.command](context, args)
    except PlannerError as e:
        print(f"❌ {e.message}")
        return 1
    finally:
        await context.close()


# =============================================================================
# MAIN
# =============================================================================

if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="PlannerPro local data maintenance")
    parser.add_argument("--log-level", default=None, help="Override the configured log level")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("status", help="Show connection, backend and record counts")
    export_parser = sub.add_parser("export", help="Export all data as JSON")
    export_parser.add_argument("--out", help="Write to this file instead of stdout")
    import_parser = sub.add_parser("import", help="Import a JSON export")
    import_parser.add_argument("file")
    sub.add_parser("flush", help="Replay queued writes against the API")
    sub.add_parser("backup", help="Write a local backup snapshot")

    sys.exit(asyncio.run(run(parser.parse_args())))
