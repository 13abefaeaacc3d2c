"""Create level history for every student tracked before the ledger existed.

Safe to run repeatedly: students that already have history are skipped.
"""

from __future__ import annotations

import argparse
import logging

from pymongo.errors import PyMongoError

from institute.config import ConfigError, get_log_level
from institute.levels.ledger import BACKFILL_ACTOR_LABEL
from institute.services.enquiries import backfill_all


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument(
        "--actor-label",
        default=BACKFILL_ACTOR_LABEL,
        help="actor name recorded on the synthetic events (default: %(default)s)",
    )
    args = parser.parse_args()

    logging.basicConfig(level=get_log_level(), format="%(levelname)s %(name)s: %(message)s")

    try:
        updated = backfill_all(actor_label=args.actor_label)
    except ConfigError as exc:  # pragma: no cover - simple CLI utility
        print(f"Configuration error: {exc}")
        raise SystemExit(1)
    except PyMongoError as exc:  # pragma: no cover - requires Mongo connection
        print(f"MongoDB error: {exc}")
        raise SystemExit(1)

    print(f"Backfilled level history for {updated} student(s).")


if __name__ == "__main__":
    main()
