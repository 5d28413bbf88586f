"""
Search maintenance entrypoint.

  python run_sweep.py            reconcile every SWEEP_INTERVAL_S until stopped
  python run_sweep.py --once     one reconciliation pass, then exit
  python run_sweep.py --reindex  full rebuild of the search index, then exit

Operator notes:
- Only one sweep runs per host (SWEEP_LOCK_PATH); a second copy just skips.
- The canonical database is never modified, apart from creating missing tables.
"""

import argparse
import logging
import signal
import sys
import threading

from enrollment.config import settings
from enrollment.database import init_db
from enrollment.services import build_services


def main() -> None:
    parser = argparse.ArgumentParser(description="Voter search index maintenance")
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--once", action="store_true", help="run a single reconciliation pass")
    mode.add_argument("--reindex", action="store_true", help="rebuild the whole index from the database")
    args = parser.parse_args()

    logging.basicConfig(level=getattr(logging, settings.log_level, logging.INFO))

    try:
        services = build_services(settings)
        init_db(services.engine)
    except Exception:
        logging.exception("Search maintenance failed to start.")
        print("\n❌ Search maintenance failed to start.")
        print("   Most common causes:")
        print("   - Database path/URL invalid (DATABASE_URL or DB_PATH)")
        print("   - ELASTICSEARCH_NODE unreachable\n")
        sys.exit(1)

    try:
        if args.reindex:
            batches = services.projector.reindex_all()
            print(f"✅ Reindex complete ({batches} batches)")
        elif args.once:
            report = services.sweep.run_once()
            if report is None:
                print("Another sweep is running; skipped.")
            else:
                print(f"✅ Sweep complete: {report.as_dict()}")
        else:
            stop = threading.Event()
            signal.signal(signal.SIGTERM, lambda *_: stop.set())
            signal.signal(signal.SIGINT, lambda *_: stop.set())
            services.sweep.run_forever(settings.sweep_interval_s, stop)
    finally:
        services.close()


if __name__ == "__main__":
    main()
