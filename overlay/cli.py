from __future__ import annotations

import argparse
import os
from typing import List, Optional

from overlay.config import get_settings
from overlay.errors import OverlayError
from overlay.runtime import build_service, build_store, cold_start
from overlay.services.restart import RestartSignal
from overlay.telemetry.logging import configure_root_logging


def _generate(args: argparse.Namespace) -> int:
    settings = get_settings()
    service = build_service(settings)
    ok = cold_start(service, prune_stale=settings.OVERRIDES_PRUNE_STALE and not args.no_prune)
    if os.path.exists(settings.MERGED_CONFIG_PATH):
        print(f"CONFIG_PATH={os.path.abspath(settings.MERGED_CONFIG_PATH)}")
    return 0 if ok else 1


def _touch(args: argparse.Namespace) -> int:
    paths = args.path or get_settings().restart_marker_paths
    for path in RestartSignal(paths).touch():
        print(f"touched {path}")
    return 0


def _prune(_args: argparse.Namespace) -> int:
    removed = build_store(get_settings()).prune_stale()
    print(f"removed {removed} stale override document(s)")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="overlay-admin")
    sub = parser.add_subparsers(dest="command", required=True)

    gen = sub.add_parser("generate", help="merge stored overrides onto the base config")
    gen.add_argument("--no-prune", action="store_true", help="keep stale duplicate documents")
    gen.set_defaults(func=_generate)

    touch = sub.add_parser("touch", help="write restart marker files")
    touch.add_argument("--path", action="append", help="marker path (repeatable)")
    touch.set_defaults(func=_touch)

    prune = sub.add_parser("prune", help="delete out-voted duplicate override documents")
    prune.set_defaults(func=_prune)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    if settings.LOG_JSON:
        configure_root_logging(settings.LOG_LEVEL)
    try:
        return int(args.func(args))
    except OverlayError as exc:
        print(f"error: {exc}")
        return 2


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
