"""Command line interface.

Usage::

    tabds prepare <path> [--name C] [--data-files [SPLIT=]GLOB ...] [--data-dir D]
                         [--force-redownload] [--ignore-verifications] [--save-info]
    tabds info <path> [--name C]
    tabds head <path> [--name C] [--split S] [-n N]
    tabds list [--builder B] [--config C]
    tabds show <dataset_id>
    tabds verify [--id <dataset_id>]
    tabds delete <dataset_id>
    tabds rebuild-cache
    tabds clean-downloads
    tabds web [--host 127.0.0.1] [--port 5000] [--debug]

Global options ``--cache-dir``, ``--config`` and ``-v/--verbose`` go before
the command.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Any

from tabds.config import Settings, load_settings
from tabds.ds.builder import DatasetBuilder
from tabds.ds.card import CARD_FILENAME, DatasetCard
from tabds.ds.load import get_dataset_config_names, load_dataset_builder
from tabds.ds.manager import CacheManager
from tabds.ds.packaged import is_packaged_module
from tabds.ds.types import DatasetError, DownloadMode, VerificationMode

logger = logging.getLogger(__name__)


def _json_dumps(obj: object) -> str:
    return json.dumps(obj, indent=2, default=str)


def _parse_data_files(values: list[str] | None) -> dict[str, list[str]] | None:
    """``["train=a/*.csv", "b.csv"]`` -> ``{"train": ["a/*.csv", "b.csv"]}``."""
    if not values:
        return None
    result: dict[str, list[str]] = {}
    for value in values:
        split, sep, pattern = value.partition("=")
        if not sep:
            split, pattern = "train", value
        result.setdefault(split, []).append(pattern)
    return result


def _builder(settings: Settings, args: argparse.Namespace) -> DatasetBuilder:
    return load_dataset_builder(
        args.path,
        name=args.name,
        data_dir=getattr(args, "data_dir", None),
        data_files=_parse_data_files(getattr(args, "data_files", None)),
        settings=settings,
    )


def _card_dir(args: argparse.Namespace) -> Path:
    if is_packaged_module(args.path):
        return Path(args.data_dir or ".")
    p = Path(args.path)
    return p.parent if p.is_file() else p


# ---------------------------------------------------------------------------
# Dataset sub-command handlers
# ---------------------------------------------------------------------------

def _cmd_prepare(settings: Settings, args: argparse.Namespace) -> None:
    builder = _builder(settings, args)
    builder.download_and_prepare(
        download_mode=DownloadMode.FORCE_REDOWNLOAD if args.force_redownload else None,
        verification_mode=VerificationMode.NO_CHECKS if args.ignore_verifications else None,
    )
    record = CacheManager(settings=settings).register(builder)
    if args.save_info:
        target = _card_dir(args)
        card_path = target / CARD_FILENAME
        if card_path.is_file():
            card = DatasetCard.load(card_path)
            card.set_dataset_info(builder.info)
        else:
            card = DatasetCard.from_info(builder.info)
        print(f"Saved dataset info to {card.save(card_path)}")
    print(_json_dumps(asdict(record)))


def _cmd_info(settings: Settings, args: argparse.Namespace) -> None:
    builder = _builder(settings, args)
    out: dict[str, Any] = {
        "builder_name": builder.name,
        "config_names": get_dataset_config_names(args.path),
        "config_id": builder.config_id,
        "cache_dir": str(builder.cache_dir),
        "prepared": builder.is_prepared,
        "info": builder.info.to_dict(),
    }
    print(_json_dumps(out))


def _cmd_head(settings: Settings, args: argparse.Namespace) -> None:
    builder = _builder(settings, args)
    builder.download_and_prepare()
    ds = builder.as_dataset(split=args.split)
    for row in ds.select(range(min(args.n, len(ds)))):
        print(json.dumps(row, default=str, ensure_ascii=False))


# ---------------------------------------------------------------------------
# Cache sub-command handlers
# ---------------------------------------------------------------------------

def _cmd_list(mgr: CacheManager, args: argparse.Namespace) -> None:
    records = mgr.list(builder_name=args.builder, config_name=args.config)
    for r in records:
        splits = ", ".join(f"{name}={n}" for name, n in r.splits.items())
        print(f"  {r.dataset_id:50s}  {r.num_examples:>10d}  {splits}")
    print(f"\n{len(records)} dataset(s)")


def _cmd_show(mgr: CacheManager, args: argparse.Namespace) -> None:
    print(_json_dumps(asdict(mgr.get(args.dataset_id))))


def _cmd_verify(mgr: CacheManager, args: argparse.Namespace) -> None:
    results = mgr.verify(dataset_id=args.id)
    ok_count = sum(1 for r in results if r.ok)
    fail_count = len(results) - ok_count
    for r in results:
        status = "OK" if r.ok else "FAIL"
        print(f"  [{status}] {r.dataset_id} / {r.file_path}")
        if r.error:
            print(f"         error: {r.error}")
    print(f"\n{ok_count} passed, {fail_count} failed")
    if fail_count:
        sys.exit(1)


def _cmd_delete(mgr: CacheManager, args: argparse.Namespace) -> None:
    mgr.delete(args.dataset_id)
    print(f"Deleted {args.dataset_id}")


def _cmd_rebuild_cache(mgr: CacheManager, _args: argparse.Namespace) -> None:
    count = mgr.rebuild_cache()
    print(f"Rebuilt index: {count} dataset(s)")


def _cmd_clean_downloads(mgr: CacheManager, _args: argparse.Namespace) -> None:
    freed = mgr.clean_downloads()
    print(f"Freed {freed} bytes")


def _cmd_web(settings: Settings, args: argparse.Namespace) -> None:
    from tabds.web.app import create_app

    app = create_app(settings=settings)
    app.run(host=args.host, port=args.port, debug=args.debug)


_DATASET_COMMANDS = {
    "prepare": _cmd_prepare,
    "info": _cmd_info,
    "head": _cmd_head,
    "web": _cmd_web,
}

_CACHE_COMMANDS = {
    "list": _cmd_list,
    "show": _cmd_show,
    "verify": _cmd_verify,
    "delete": _cmd_delete,
    "rebuild-cache": _cmd_rebuild_cache,
    "clean-downloads": _cmd_clean_downloads,
}


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------

def _add_source_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("path", help="Packaged module (csv/json/text), builder script or data directory")
    p.add_argument("--name", default=None, help="Config name")
    p.add_argument("--data-dir", default=None)
    p.add_argument(
        "--data-files", action="append", default=None, metavar="[SPLIT=]GLOB",
        help="Data file pattern, repeatable; without SPLIT= the files go to train",
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="tabds", description="Tabular dataset builder and cache")
    parser.add_argument("--cache-dir", default=None, help="Cache root (overrides TABDS_CACHE)")
    parser.add_argument(
        "--config", dest="settings_file", default=None, help="Settings file (default: ./tabds.yaml)"
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command")

    p = sub.add_parser("prepare", help="Download and prepare a dataset")
    _add_source_args(p)
    p.add_argument("--force-redownload", action="store_true")
    p.add_argument("--ignore-verifications", action="store_true")
    p.add_argument("--save-info", action="store_true", help="Write dataset_info into the README.md card")

    p = sub.add_parser("info", help="Show builder and dataset info")
    _add_source_args(p)

    p = sub.add_parser("head", help="Print the first rows of a split")
    _add_source_args(p)
    p.add_argument("--split", default="train")
    p.add_argument("-n", type=int, default=5)

    p = sub.add_parser("list", help="List prepared datasets")
    p.add_argument("--builder", default=None)
    p.add_argument("--config", dest="config", default=None)

    p = sub.add_parser("show", help="Show a prepared dataset record")
    p.add_argument("dataset_id")

    p = sub.add_parser("verify", help="Verify shard checksums")
    p.add_argument("--id", default=None)

    p = sub.add_parser("delete", help="Delete a prepared dataset")
    p.add_argument("dataset_id")

    sub.add_parser("rebuild-cache", help="Rebuild the SQLite index from YAML")
    sub.add_parser("clean-downloads", help="Delete cached downloads")

    p = sub.add_parser("web", help="Start the web server")
    p.add_argument("--host", default="127.0.0.1")
    p.add_argument("--port", type=int, default=5000)
    p.add_argument("--debug", action="store_true")

    return parser


def main(argv: list[str] | None = None) -> None:
    """CLI entry-point."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    try:
        settings = load_settings(args.settings_file, cache_root=args.cache_dir)
        if args.command in _CACHE_COMMANDS:
            _CACHE_COMMANDS[args.command](CacheManager(settings=settings), args)
        else:
            _DATASET_COMMANDS[args.command](settings, args)
    except (DatasetError, FileNotFoundError, ValueError) as exc:
        logger.debug("Command %s failed", args.command, exc_info=True)
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)
