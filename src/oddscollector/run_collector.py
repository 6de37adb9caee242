import argparse
import logging
import sys
import time

from . import config
from .factory import build_collector, build_index_builder
from .index_builder import refresh_league_indexes
from .utils.log import setup_logging

logger = logging.getLogger("oddscollector.run")


def run_once(collector, builder, discovery: bool = True) -> dict:
    if discovery:
        summary = collector.run()
    else:
        summary = collector.execute()
        collector.flush_metrics()
        summary.pending = collector.queue.get_summary().total_pending

    # per league; a failure is logged and the others still refresh
    for league in collector.leagues:
        try:
            seasons = refresh_league_indexes(collector.queue, builder, league.id)
            if seasons:
                logger.info("indexes refreshed for %s: %s", league.id, ", ".join(seasons))
        except Exception as e:
            logger.error("index refresh failed for %s: %s", league.id, e)
    return summary.to_dict()


def main():
    ap = argparse.ArgumentParser(description="Discover fixtures and collect due odds snapshots")
    ap.add_argument("--no-discovery", action="store_true", help="only execute due jobs")
    ap.add_argument("--loop", action="store_true", help="keep running every --interval seconds")
    ap.add_argument("--interval", type=float, default=300.0)
    args = ap.parse_args()

    setup_logging()
    collector = build_collector()
    builder = build_index_builder(collector.store)
    logger.info("leagues=%s preset=%s", [lg.id for lg in collector.leagues], config.TIMING_PRESET)

    while True:
        s = run_once(collector, builder, discovery=not args.no_discovery)
        print(f"✔ run done  scheduled={s['jobs_scheduled']}  completed={s['jobs_completed']}  "
              f"failed={s['jobs_failed']}  pending={s['pending']}", flush=True)
        if not args.loop:
            break
        time.sleep(args.interval)


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        sys.exit(130)
    except Exception as e:
        print(f"[ERROR] unexpected: {e}", flush=True)
        sys.exit(1)
