import argparse
import logging

from paytracker import config
from paytracker.cli import PayTrackerCLI
from paytracker.logic import Planner
from paytracker.storage import JsonFileStore, list_save_files


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Track bills and paydays and project account balances.")
    parser.add_argument("--save", default=config.DEFAULT_SAVE, help="save file name (default: %(default)s)")
    parser.add_argument("--year", type=int, default=None, help="year templates are generated into")
    parser.add_argument("--list-saves", action="store_true", help="list available save files and exit")
    parser.add_argument("--log-level", default=config.LOG_LEVEL, help="logging level (default: %(default)s)")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=args.log_level.upper(), format=config.LOG_FORMAT)

    if args.list_saves:
        for name in list_save_files():
            print(name)
        return 0

    config.ensure_data_directories()
    store = JsonFileStore(config.save_path(args.save))
    PayTrackerCLI(Planner(store, year=args.year)).cmdloop()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
