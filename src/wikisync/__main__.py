import argparse
import sys

from src.config.logger_config import logger
from src.config.settings import load_settings
from src.wikisync.application.report import render_report
from src.wikisync.application.workflows.sync_wiki import MODES
from src.wikisync.domain.errors import FatalSyncError
from src.wikisync.sync import run_sync


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="wikisync",
        description="Incremental page and vote sync against the CROM GraphQL API",
    )
    parser.add_argument("mode", nargs="?", default="full", choices=MODES)
    parser.add_argument("--env-file", default=None, help="dotenv file with WIKISYNC_* settings")
    parser.add_argument("--no-progress", action="store_true", help="disable progress bars")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = load_settings(args.env_file)
    try:
        summary = run_sync(args.mode, settings=settings, show_progress=False if args.no_progress else None)
    except FatalSyncError as exc:
        logger.error("Sync aborted: {}", exc)
        return 1
    print(render_report(summary))
    return 0


# python -m src.wikisync [full|resume|votes]
if __name__ == "__main__":
    sys.exit(main())
