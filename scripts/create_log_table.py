"""Create the canonical register log table.

Usage: python scripts/create_log_table.py <connection-string> [table]
"""
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "agent"))

from plc_sql_agent.errors import PersistenceFailure  # noqa: E402
from plc_sql_agent.logging_setup import configure_logging  # noqa: E402
from plc_sql_agent.sink import DEFAULT_TABLE, create_log_table  # noqa: E402


def main(argv):
    if not argv:
        print(__doc__.strip().splitlines()[-1], file=sys.stderr)
        return 2
    configure_logging(to_file=False)
    table = argv[1] if len(argv) > 1 else DEFAULT_TABLE
    try:
        create_log_table(argv[0], table)
    except (PersistenceFailure, ValueError) as e:
        logging.getLogger("create_log_table").error("%s", e)
        return 1
    print("table ready:", table)
    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
