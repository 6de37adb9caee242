import json
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from ..errors import ProviderError
from .base import Fixture, OddsPayload, OddsProvider, fixture_from_event


class LocalJsonProvider(OddsProvider):
    """
    Offline provider backed by a dict (or a JSON file with the same shape):

        {"fixtures": {"soccer_epl": [<event>, ...]},
         "odds": {"<fixture id>": <event odds>}}

    Events and odds use the the-odds-api field names. Every call is recorded
    in `calls` so runs can be inspected afterwards.
    """

    def __init__(self, data: Optional[Dict[str, Any]] = None):
        data = data or {}
        self.fixtures: Dict[str, List[Dict[str, Any]]] = dict(data.get("fixtures", {}))
        self.odds: Dict[str, Dict[str, Any]] = dict(data.get("odds", {}))
        self.calls: List[tuple] = []

    @classmethod
    def from_file(cls, path: str) -> "LocalJsonProvider":
        with open(path, "r", encoding="utf-8") as f:
            return cls(json.load(f))

    def list_fixtures(self, league_key: str) -> List[Fixture]:
        self.calls.append(("list_fixtures", league_key))
        return [fixture_from_event(ev) for ev in self.fixtures.get(league_key, [])]

    def fetch_live_odds(self, league_key: str, fixture_id: str,
                        markets: Sequence[str], region: str = "eu") -> OddsPayload:
        self.calls.append(("fetch_live_odds", league_key, fixture_id, tuple(markets), region))
        return self._lookup(fixture_id, markets)

    def fetch_historical_fixtures(self, league_key: str, as_of: datetime,
                                  from_: Optional[datetime] = None,
                                  to: Optional[datetime] = None) -> List[Fixture]:
        self.calls.append(("fetch_historical_fixtures", league_key, as_of))
        out = []
        for fx in (fixture_from_event(ev) for ev in self.fixtures.get(league_key, [])):
            if from_ and fx.kickoff < from_:
                continue
            if to and fx.kickoff > to:
                continue
            out.append(fx)
        return out

    def fetch_historical_odds(self, league_key: str, fixture_id: str, as_of: datetime,
                              markets: Sequence[str], region: str = "eu") -> OddsPayload:
        self.calls.append(("fetch_historical_odds", league_key, fixture_id, as_of))
        return self._lookup(fixture_id, markets)

    def _lookup(self, fixture_id: str, markets: Sequence[str]) -> OddsPayload:
        raw = self.odds.get(fixture_id)
        if raw is None:
            raise ProviderError(f"HTTP error 404 for event {fixture_id}")
        payload = OddsPayload.from_dict(raw)
        wanted = set(markets)
        for bk in payload.bookmakers:
            bk.markets = [m for m in bk.markets if m.key in wanted]
        return payload
