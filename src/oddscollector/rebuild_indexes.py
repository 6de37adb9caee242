import argparse
import logging
import sys

from . import config
from .factory import build_index_builder, build_store
from .index_builder import IndexBuilder, descriptors_from_snapshots
from .leagues import TeamNormalizer, normalize_team_name
from .utils.dates import utcnow
from .utils.log import setup_logging
from .utils.paths import infer_season

logger = logging.getLogger("oddscollector.rebuild_indexes")


def rebuild_from_snapshots(builder: IndexBuilder, league_id: str, season: str,
                           clear: bool = False,
                           normalize: TeamNormalizer = normalize_team_name) -> int:
    """Rebuilds all three indexes of a league/season from the stored snapshots."""
    store = builder.store
    descriptors = descriptors_from_snapshots(store, league_id, season, normalize)
    if not descriptors:
        logger.warning("no readable snapshots for %s/%s", league_id, season)
        return 0
    if clear:
        store.clear_indexes(league_id, season)
    builder.update_match_index(league_id, season, descriptors)
    builder.build_all_indexes(league_id, season)
    return len(descriptors)


def main():
    ap = argparse.ArgumentParser(description="Rebuild lookup indexes from stored snapshots")
    ap.add_argument("--league", action="append",
                    help="league id, repeatable (default: LEAGUES from env)")
    ap.add_argument("--season", help='e.g. "2025-2026" (default: current season)')
    ap.add_argument("--clear", action="store_true",
                    help="drop the existing indexes instead of merging into them")
    args = ap.parse_args()

    setup_logging()
    store = build_store()
    builder = build_index_builder(store)
    season = args.season or infer_season(utcnow())

    failed = False
    for league_id in args.league or config.LEAGUES:
        try:
            n = rebuild_from_snapshots(builder, league_id, season, clear=args.clear)
        except Exception as e:
            print(f"[ERROR] {league_id}/{season}: {e}", flush=True)
            failed = True
            continue
        print(f"✔ {league_id}/{season}: indexes built from {n} snapshots")
    if failed:
        sys.exit(1)


if __name__ == "__main__":
    main()
