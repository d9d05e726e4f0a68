import logging
import sqlite3
import sys
from pathlib import Path

import fncli

from . import config, db
from .core.errors import HabitGridError
from .lib import ansi
from .lib.errors import exit_error

_discovered = False


def _setup_logging() -> None:
    root = logging.getLogger("habitgrid")
    if root.handlers:
        return
    try:
        config.LOG_FILE.parent.mkdir(parents=True, exist_ok=True)
        handler: logging.Handler = logging.FileHandler(config.LOG_FILE)
    except OSError:
        handler = logging.NullHandler()
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    root.addHandler(handler)
    root.setLevel(config.get_log_level())


def run(args: list[str]) -> int:
    global _discovered
    if not _discovered:
        fncli.autodiscover(Path(__file__).parent, "habitgrid")
        _discovered = True

    try:
        if not args:
            from .habits import dashboard

            dashboard()
            return 0
        return fncli.dispatch(["habitgrid", *args])
    except HabitGridError as e:
        logging.getLogger(__name__).info("%s: %s", " ".join(args) or "dashboard", e)
        sys.stderr.write(f"{e}\n")
        return 1


def main():
    _setup_logging()
    if not sys.stdout.isatty():
        ansi.use(ansi.PLAIN)
    try:
        db.init()
    except (sqlite3.DatabaseError, ValueError) as e:
        exit_error(f"cannot open {config.DB_PATH}: {e}")
    sys.exit(run(sys.argv[1:]))


if __name__ == "__main__":
    main()
