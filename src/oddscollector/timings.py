from dataclasses import dataclass
from typing import Dict, List, Literal, Tuple

Priority = Literal["critical", "important", "normal"]

DEFAULT_MARKETS: Tuple[str, ...] = (
    "h2h", "alternate_totals", "alternate_spreads", "btts", "double_chance",
)


@dataclass(frozen=True)
class TimingOffset:
    name: str                   # unique, e.g. "opening", "closing"
    hours_before_kickoff: float
    markets: Tuple[str, ...]
    priority: Priority = "normal"

    def __post_init__(self):
        if self.hours_before_kickoff < 0:
            raise ValueError(f"{self.name}: hours_before_kickoff must be >= 0")
        if not self.markets:
            raise ValueError(f"{self.name}: market set must not be empty")

    @property
    def markets_param(self) -> str:
        return ",".join(self.markets)


# 7 days out, early positioning
OPENING = TimingOffset("opening", 168, DEFAULT_MARKETS, "important")
# 3 days out
MID_WEEK = TimingOffset("mid_week", 72, DEFAULT_MARKETS, "important")
# 24h out, close to team news
DAY_BEFORE = TimingOffset("day_before", 24, DEFAULT_MARKETS, "important")
# 90 minutes out, closing line for CLV
CLOSING = TimingOffset("closing", 1.5, DEFAULT_MARKETS, "critical")

TIMING_PRESETS: Dict[str, List[TimingOffset]] = {
    "MINIMAL": [CLOSING],
    "BASIC": [OPENING, CLOSING],
    "STANDARD": [OPENING, MID_WEEK, CLOSING],
    "COMPREHENSIVE": [OPENING, MID_WEEK, DAY_BEFORE, CLOSING],
}


def get_preset(name: str) -> List[TimingOffset]:
    try:
        return list(TIMING_PRESETS[name.upper()])
    except KeyError:
        raise ValueError(
            f"unknown timing preset {name!r}, expected one of {sorted(TIMING_PRESETS)}"
        ) from None
