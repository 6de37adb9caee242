from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Sequence

from ..utils.dates import parse_iso_utc

CostKind = Literal["events", "live_odds", "historical_events", "historical_odds"]


@dataclass(frozen=True)
class Fixture:
    id: str                    # provider id, stable
    home_team: str
    away_team: str
    kickoff: datetime          # naive UTC
    sport_key: str = ""

    @property
    def match_date(self) -> str:
        return self.kickoff.date().isoformat()


@dataclass
class Outcome:
    name: str
    price: float
    point: Optional[float] = None


@dataclass
class Market:
    key: str                   # "h2h", "totals", ...
    outcomes: List[Outcome] = field(default_factory=list)


@dataclass
class BookmakerOdds:
    key: str
    title: str
    last_update: str
    markets: List[Market] = field(default_factory=list)


@dataclass
class OddsPayload:
    id: str
    sport_key: str
    home_team: str
    away_team: str
    commence_time: str         # ISO8601, as sent by the provider
    bookmakers: List[BookmakerOdds] = field(default_factory=list)

    def market_keys(self) -> List[str]:
        keys = {m.key for bk in self.bookmakers for m in bk.markets}
        return sorted(keys)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "OddsPayload":
        return cls(
            id=str(d["id"]),
            sport_key=d.get("sport_key", ""),
            home_team=d.get("home_team", ""),
            away_team=d.get("away_team", ""),
            commence_time=d.get("commence_time", ""),
            bookmakers=[
                BookmakerOdds(
                    key=bk.get("key", ""),
                    title=bk.get("title", ""),
                    last_update=bk.get("last_update", ""),
                    markets=[
                        Market(
                            key=m.get("key", ""),
                            outcomes=[
                                Outcome(name=o.get("name", ""), price=float(o["price"]),
                                        point=o.get("point"))
                                for o in m.get("outcomes", [])
                                if o.get("price") is not None
                            ],
                        )
                        for m in bk.get("markets", [])
                    ],
                )
                for bk in d.get("bookmakers", [])
            ],
        )


@dataclass
class SnapshotMetadata:
    timestamp: str             # capture instant
    date: str                  # match date YYYY-MM-DD
    league: str
    season: str
    collection_method: str     # event_based | historical
    snapshot_timing: str       # offset name
    fixture_id: str
    kickoff_time: str
    home_team: str = ""        # normalized, as on the job row
    away_team: str = ""


@dataclass
class Snapshot:
    metadata: SnapshotMetadata
    odds: OddsPayload

    @property
    def snapshot_id(self) -> str:
        return f"{self.metadata.fixture_id}_{self.metadata.snapshot_timing}_{self.metadata.date}"

    def to_dict(self) -> Dict[str, Any]:
        return {"metadata": asdict(self.metadata), "odds": self.odds.to_dict()}

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Snapshot":
        md = d["metadata"]
        return cls(
            metadata=SnapshotMetadata(
                timestamp=md["timestamp"],
                date=md["date"],
                league=md["league"],
                season=md["season"],
                collection_method=md.get("collection_method", "event_based"),
                snapshot_timing=md["snapshot_timing"],
                fixture_id=str(md["fixture_id"]),
                kickoff_time=md.get("kickoff_time", ""),
                home_team=md.get("home_team", ""),
                away_team=md.get("away_team", ""),
            ),
            odds=OddsPayload.from_dict(d["odds"]),
        )


def fixture_from_event(ev: Dict[str, Any]) -> Fixture:
    return Fixture(
        id=str(ev["id"]),
        home_team=(ev.get("home_team") or "").strip(),
        away_team=(ev.get("away_team") or "").strip(),
        kickoff=parse_iso_utc(ev["commence_time"]),
        sport_key=ev.get("sport_key") or "",
    )


def estimate_cost(kind: CostKind, market_count: int, region_count: int) -> int:
    if kind == "events":
        return 0                                    # free
    if kind == "live_odds":
        return market_count * region_count
    if kind == "historical_events":
        return 1
    if kind == "historical_odds":
        return 10 * market_count * region_count
    return 0


class OddsProvider(ABC):
    """
    What the collector needs from an odds source. Every failure surfaces as
    ProviderError; callers treat it as retryable by rescheduling.
    """

    @abstractmethod
    def list_fixtures(self, league_key: str) -> List[Fixture]:
        ...

    @abstractmethod
    def fetch_live_odds(self, league_key: str, fixture_id: str,
                        markets: Sequence[str], region: str) -> OddsPayload:
        ...

    @abstractmethod
    def fetch_historical_fixtures(self, league_key: str, as_of: datetime,
                                  from_: Optional[datetime] = None,
                                  to: Optional[datetime] = None) -> List[Fixture]:
        ...

    @abstractmethod
    def fetch_historical_odds(self, league_key: str, fixture_id: str, as_of: datetime,
                              markets: Sequence[str], region: str) -> OddsPayload:
        ...

    def estimate_cost(self, kind: CostKind, market_count: int, region_count: int) -> int:
        return estimate_cost(kind, market_count, region_count)
