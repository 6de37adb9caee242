from datetime import datetime

import pytest
import requests

from conftest import make_event, make_odds
from oddscollector.errors import ProviderError
from oddscollector.providers.theoddsapi import TheOddsApiProvider


class FakeResponse:
    def __init__(self, payload, status_code=200, headers=None):
        self._payload = payload
        self.status_code = status_code
        self.headers = headers or {}

    def json(self):
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error", response=self)


@pytest.fixture
def http(monkeypatch):
    calls = []
    responses = []

    def fake_get(url, params=None, timeout=None):
        calls.append({"url": url, "params": dict(params or {}), "timeout": timeout})
        r = responses.pop(0)
        if isinstance(r, Exception):
            raise r
        return r

    monkeypatch.setattr(requests, "get", fake_get)
    return calls, responses


def provider():
    return TheOddsApiProvider(api_key="secret-key", base_url="https://api.example.com/v4/", timeout=5)


def test_missing_api_key():
    with pytest.raises(ProviderError):
        TheOddsApiProvider(api_key="")


def test_list_fixtures(http):
    calls, responses = http
    responses.append(FakeResponse(
        [make_event("e1"), make_event("e2", home="Everton", away="Fulham")],
        headers={"x-requests-used": "10", "x-requests-remaining": "490"},
    ))

    fixtures = provider().list_fixtures("soccer_epl")
    assert [f.id for f in fixtures] == ["e1", "e2"]
    assert fixtures[0].kickoff == datetime(2025, 11, 30, 15, 0)
    assert fixtures[1].match_date == "2025-11-30"
    assert calls[0]["url"] == "https://api.example.com/v4/sports/soccer_epl/events"
    assert calls[0]["params"]["apiKey"] == "secret-key"
    assert calls[0]["timeout"] == 5


def test_fetch_live_odds(http):
    calls, responses = http
    responses.append(FakeResponse(make_odds("e1")))

    payload = provider().fetch_live_odds("soccer_epl", "e1", ("h2h", "btts"), "eu")
    assert payload.id == "e1"
    assert payload.bookmakers[0].markets[0].outcomes[1].price == 3.4
    assert calls[0]["url"].endswith("/sports/soccer_epl/events/e1/odds")
    assert calls[0]["params"]["markets"] == "h2h,btts"
    assert calls[0]["params"]["regions"] == "eu"
    assert calls[0]["params"]["oddsFormat"] == "decimal"


def test_http_errors_become_provider_errors_without_leaking_the_key(http):
    _, responses = http
    responses.append(FakeResponse({"message": "bad key"}, status_code=401))

    with pytest.raises(ProviderError) as exc:
        provider().list_fixtures("soccer_epl")
    assert "401" in str(exc.value)
    assert "secret-key" not in str(exc.value)


def test_timeouts_and_bad_payloads(http):
    _, responses = http
    responses.append(requests.Timeout("slow"))
    responses.append(FakeResponse(ValueError("not json")))
    responses.append(FakeResponse([{"id": "e1"}]))         # no commence_time

    p = provider()
    with pytest.raises(ProviderError, match="timeout"):
        p.list_fixtures("soccer_epl")
    with pytest.raises(ProviderError):
        p.list_fixtures("soccer_epl")
    with pytest.raises(ProviderError, match="Malformed"):
        p.list_fixtures("soccer_epl")


def test_historical_endpoints_unwrap_payload(http):
    calls, responses = http
    responses.append(FakeResponse({"timestamp": "2025-11-24T00:00:00Z", "data": [make_event("e1")]}))
    responses.append(FakeResponse({"timestamp": "2025-11-29T15:00:00Z", "data": make_odds("e1")}))

    p = provider()
    as_of = datetime(2025, 11, 24)
    fixtures = p.fetch_historical_fixtures("soccer_epl", as_of, from_=as_of,
                                           to=datetime(2025, 12, 1, 23, 59, 59))
    assert [f.id for f in fixtures] == ["e1"]
    assert calls[0]["url"].endswith("/historical/sports/soccer_epl/events")
    assert calls[0]["params"]["date"] == "2025-11-24T00:00:00Z"
    assert calls[0]["params"]["commenceTimeTo"] == "2025-12-01T23:59:59Z"

    odds = p.fetch_historical_odds("soccer_epl", "e1", datetime(2025, 11, 29, 15), ["h2h"], "eu")
    assert odds.home_team == "Arsenal FC"
    assert calls[1]["params"]["date"] == "2025-11-29T15:00:00Z"
