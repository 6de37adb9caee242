import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence
from urllib.parse import urlparse

import requests

from ..config import ODDS_API_BASE_URL, ODDS_API_KEY, ODDS_API_TIMEOUT
from ..errors import ProviderError
from ..utils.dates import iso_z
from .base import Fixture, OddsPayload, OddsProvider, fixture_from_event

logger = logging.getLogger("oddscollector.theoddsapi")


def _safe_url(url: str) -> str:
    # query string carries the api key
    parsed = urlparse(url)
    return f"{parsed.scheme}://{parsed.netloc}{parsed.path}"


class TheOddsApiProvider(OddsProvider):
    """the-odds-api.com v4 client. Docs: https://the-odds-api.com/liveapi/guides/v4/"""

    def __init__(self, api_key: str = ODDS_API_KEY, base_url: str = ODDS_API_BASE_URL,
                 timeout: float = ODDS_API_TIMEOUT, session: Optional[requests.Session] = None):
        if not api_key:
            raise ProviderError("ODDS_API_KEY missing in env")
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._http = session or requests

    def _get(self, path: str, **params) -> Any:
        url = f"{self.base_url}{path}"
        params = {k: v for k, v in params.items() if v is not None}
        params["apiKey"] = self.api_key
        params.setdefault("dateFormat", "iso")
        try:
            r = self._http.get(url, params=params, timeout=self.timeout)
            r.raise_for_status()
            data = r.json()
        except requests.Timeout as e:
            raise ProviderError(f"Request timeout after {self.timeout}s: {_safe_url(url)}") from e
        except requests.HTTPError as e:
            status = e.response.status_code if e.response is not None else "?"
            raise ProviderError(f"HTTP error {status} for {_safe_url(url)}") from e
        except (requests.RequestException, ValueError) as e:
            raise ProviderError(f"Request failed for {_safe_url(url)}: {e}") from e

        used = r.headers.get("x-requests-used")
        remaining = r.headers.get("x-requests-remaining")
        if used is not None or remaining is not None:
            logger.debug("odds api usage: used=%s remaining=%s", used, remaining)
        return data

    @staticmethod
    def _unwrap(data: Any) -> Any:
        # historical endpoints wrap the payload: {"timestamp": ..., "data": ...}
        if isinstance(data, dict) and "data" in data and "timestamp" in data:
            return data["data"]
        return data

    @staticmethod
    def _fixtures(events: List[Dict[str, Any]]) -> List[Fixture]:
        try:
            return [fixture_from_event(ev) for ev in events]
        except (KeyError, TypeError, ValueError) as e:
            raise ProviderError(f"Malformed events payload: {e}") from e

    @staticmethod
    def _odds(data: Dict[str, Any]) -> OddsPayload:
        try:
            return OddsPayload.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            raise ProviderError(f"Malformed odds payload: {e}") from e

    def list_fixtures(self, league_key: str) -> List[Fixture]:
        return self._fixtures(self._get(f"/sports/{league_key}/events"))

    def fetch_live_odds(self, league_key: str, fixture_id: str,
                        markets: Sequence[str], region: str = "eu") -> OddsPayload:
        data = self._get(
            f"/sports/{league_key}/events/{fixture_id}/odds",
            regions=region, markets=",".join(markets), oddsFormat="decimal",
        )
        return self._odds(data)

    def fetch_historical_fixtures(self, league_key: str, as_of: datetime,
                                  from_: Optional[datetime] = None,
                                  to: Optional[datetime] = None) -> List[Fixture]:
        data = self._get(
            f"/historical/sports/{league_key}/events",
            date=iso_z(as_of),
            commenceTimeFrom=iso_z(from_) if from_ else None,
            commenceTimeTo=iso_z(to) if to else None,
        )
        return self._fixtures(self._unwrap(data))

    def fetch_historical_odds(self, league_key: str, fixture_id: str, as_of: datetime,
                              markets: Sequence[str], region: str = "eu") -> OddsPayload:
        data = self._get(
            f"/historical/sports/{league_key}/events/{fixture_id}/odds",
            date=iso_z(as_of), regions=region, markets=",".join(markets),
            oddsFormat="decimal",
        )
        return self._odds(self._unwrap(data))
