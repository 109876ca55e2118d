"""
storekeeper: inspect and back up a store from the command line.

Purpose
- Open a store (applying no caller migrations), then print statistics,
  migration history, or take a backup.
- Provide both human-readable and JSON output.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import math
import sys
from collections.abc import Mapping, Sequence
from dataclasses import asdict, is_dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = REPO_ROOT / "src"

if TYPE_CHECKING:
    from storekeeper.config.schema import StoreConfig

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]


def _ensure_src_path() -> None:
    if str(SRC_PATH) not in sys.path:
        sys.path.insert(0, str(SRC_PATH))


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Inspect or back up a storekeeper store.")
    source = parser.add_mutually_exclusive_group()
    source.add_argument("--db", type=Path, help="Path to the SQLite store file.")
    source.add_argument("--config", type=Path, help="Path to a TOML or YAML store config.")
    parser.add_argument("--json", action="store_true", help="Emit machine-readable JSON output.")

    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser("stats", help="Show page, table and index statistics.")
    commands.add_parser("history", help="Show applied migrations.")
    backup = commands.add_parser("backup", help="Take an online backup now.")
    backup.add_argument("--name", help="Backup file name; defaults to a date-time name.")
    return parser.parse_args(argv)


def _resolve_config(args: argparse.Namespace) -> StoreConfig:
    from storekeeper.config import OpenOptions, StoreConfig, assert_valid_config, load_config

    if args.db is not None:
        return assert_valid_config(
            StoreConfig(
                filename=str(args.db.expanduser().resolve()),
                options=OpenOptions(must_exist=True),
            )
        )
    return load_config(args.config)


def _to_json_value(value: object) -> JSONValue:
    if value is None or isinstance(value, (str, bool, int)):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else str(value)
    if isinstance(value, datetime):
        normalized = value if value.tzinfo is not None else value.replace(tzinfo=UTC)
        return normalized.astimezone(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")
    if isinstance(value, Path):
        return value.as_posix()
    if is_dataclass(value) and not isinstance(value, type):
        return _to_json_value(asdict(value))
    if isinstance(value, Mapping):
        return {str(key): _to_json_value(value[key]) for key in sorted(value, key=str)}
    if isinstance(value, (list, tuple)):
        return [_to_json_value(item) for item in value]
    return str(value)


def _emit_json(payload: Mapping[str, object]) -> None:
    print(
        json.dumps(
            _to_json_value(payload),
            sort_keys=True,
            separators=(",", ":"),
            ensure_ascii=False,
        )
    )


def _emit_text(command: str, payload: Mapping[str, object]) -> None:
    print(f"store: {payload['store']}")
    if command == "stats":
        stats = payload["stats"]
        print(f"size_bytes: {stats.size_bytes}")
        print(f"pages: {stats.page_count} x {stats.page_size} ({stats.free_pages} free)")
        print("tables:")
        for table in stats.tables:
            rows = "-" if table.row_count is None else table.row_count
            print(f"  {table.name} [{table.type}] rows={rows} columns={len(table.columns)}")
        print("indices:")
        for index in stats.indices:
            unique = " unique" if index.unique else ""
            print(f"  {index.name} on {index.table_name}({', '.join(index.columns)}){unique}")
    elif command == "history":
        print("migrations:")
        for record in payload["migrations"]:
            print(f"  v{record.version}: {record.name} ({record.identifier}, {record.applied_at})")
    else:
        record = payload["backup"]
        print(f"backup: {record.path} ({record.size_bytes} bytes)")


async def _run(command: str, config: StoreConfig, name: str | None) -> dict[str, object]:
    from storekeeper.persistence import StoreManager

    payload: dict[str, object] = {"store": config.filename}
    async with StoreManager(config) as manager:
        if command == "stats":
            payload["stats"] = await manager.get_stats()
        elif command == "history":
            payload["migrations"] = await manager.migration_history()
        else:
            payload["backup"] = await manager.create_backup(name)
    return payload


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)
    _ensure_src_path()

    try:
        config = _resolve_config(args)
        payload = asyncio.run(_run(args.command, config, getattr(args, "name", None)))
        if args.json:
            _emit_json(payload)
        else:
            _emit_text(args.command, payload)
        return 0
    except Exception as exc:  # noqa: BLE001
        if args.json:
            _emit_json({"command": args.command, "error": str(exc)})
        else:
            print(f"error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
