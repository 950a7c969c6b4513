"""CLI entrypoint for localai-chat."""

from __future__ import annotations

import argparse
from importlib import metadata
from pathlib import Path
from typing import Sequence

from .app import LocalChatApp
from .config import ensure_config_dir


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="localai-chat", description="Chat with a local model in the terminal"
    )
    parser.add_argument(
        "--version",
        action="store_true",
        help="Print version and exit",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        metavar="PATH",
        help="Read configuration from PATH instead of the default location",
    )
    parser.add_argument(
        "--no-persist",
        action="store_true",
        help="Keep settings and history in memory only",
    )
    return parser


def main(argv: Sequence[str] | None = None) -> None:
    """Ensure configuration exists, handle CLI flags, and run the TUI."""

    parser = _build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    if args.version:
        try:
            version = metadata.version("localai-chat")
        except metadata.PackageNotFoundError:
            version = "0.0.0"
        print(f"localai-chat {version}")
        return

    ensure_config_dir()
    app = LocalChatApp(config_path=args.config, persist=not args.no_persist)
    app.run()


if __name__ == "__main__":
    main()
