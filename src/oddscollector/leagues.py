import logging
import re
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional

logger = logging.getLogger("oddscollector.leagues")

TeamNormalizer = Callable[[str], str]


@dataclass(frozen=True)
class LeagueConfig:
    id: str                 # our id, e.g. "england_premier_league"
    name: str
    provider_key: str       # provider sport key, e.g. "soccer_epl"


LEAGUES: Dict[str, LeagueConfig] = {
    lg.id: lg for lg in (
        LeagueConfig("england_premier_league", "English Premier League", "soccer_epl"),
        LeagueConfig("italy_serie_a", "Italian Serie A", "soccer_italy_serie_a"),
    )
}


def get_league_config(league_id: str) -> Optional[LeagueConfig]:
    return LEAGUES.get(league_id)


def resolve_leagues(league_ids: Iterable[str]) -> List[LeagueConfig]:
    out = []
    for league_id in league_ids:
        lg = get_league_config(league_id)
        if lg is None:
            logger.warning("League config not found for %s, skipping", league_id)
            continue
        out.append(lg)
    return out


_WS = re.compile(r"\s+")


def normalize_team_name(name: str) -> str:
    """Default normalizer: trims and collapses inner whitespace."""
    return _WS.sub(" ", (name or "").strip())
