import pytest

from oddscollector import config
from oddscollector.leagues import normalize_team_name, resolve_leagues
from oddscollector.providers.base import estimate_cost
from oddscollector.timings import CLOSING, DEFAULT_MARKETS, TimingOffset, get_preset
from oddscollector.utils.retry import backoff_delay, is_transient, with_retry


def test_presets():
    assert [t.name for t in get_preset("minimal")] == ["closing"]
    assert [t.name for t in get_preset("COMPREHENSIVE")] == ["opening", "mid_week", "day_before", "closing"]
    assert CLOSING.hours_before_kickoff == 1.5
    assert CLOSING.markets_param == ",".join(DEFAULT_MARKETS)
    with pytest.raises(ValueError):
        get_preset("EVERYTHING")


def test_timing_offset_validation():
    with pytest.raises(ValueError):
        TimingOffset("bad", -1, ("h2h",))
    with pytest.raises(ValueError):
        TimingOffset("empty", 2, ())


def test_resolve_leagues_skips_unknown(caplog):
    leagues = resolve_leagues(["england_premier_league", "atlantis_league"])
    assert [lg.provider_key for lg in leagues] == ["soccer_epl"]
    assert "atlantis_league" in caplog.text


def test_normalize_team_name():
    assert normalize_team_name("  Manchester   United ") == "Manchester United"


def test_cost_model():
    assert estimate_cost("events", 5, 1) == 0
    assert estimate_cost("live_odds", 5, 2) == 10
    assert estimate_cost("historical_events", 5, 2) == 1
    assert estimate_cost("historical_odds", 5, 2) == 100


def test_backoff_is_exponential_and_capped():
    assert [backoff_delay(n) for n in (1, 2, 3, 4, 5)] == [1.0, 2.0, 4.0, 8.0, 10.0]


def test_with_retry_gives_up_with_error_cls():
    sleeps = []

    def boom():
        raise OSError("disk on fire")

    with pytest.raises(KeyError) as exc:
        with_retry(boom, "boom", max_attempts=3, sleep=sleeps.append, error_cls=KeyError)
    assert isinstance(exc.value.__cause__, OSError)
    assert sleeps == [1.0, 2.0]


def test_with_retry_raises_permanent_errors_at_once():
    sleeps = []
    calls = []

    def bad_input():
        calls.append(1)
        raise ValueError("key escapes storage root")

    with pytest.raises(RuntimeError) as exc:
        with_retry(bad_input, "bad", max_attempts=5, sleep=sleeps.append)
    assert isinstance(exc.value.__cause__, ValueError)
    assert (calls, sleeps) == ([1], [])

    assert is_transient(ConnectionError("reset")) is True
    assert is_transient(KeyError("x")) is False


def test_env_list_parsing(monkeypatch):
    monkeypatch.setenv("X_LEAGUES", '["a", "b"]')
    assert config._get_list("X_LEAGUES", []) == ["a", "b"]
    monkeypatch.setenv("X_LEAGUES", "a, b,,c")
    assert config._get_list("X_LEAGUES", []) == ["a", "b", "c"]
    monkeypatch.delenv("X_LEAGUES")
    assert config._get_list("X_LEAGUES", ["z"]) == ["z"]


def test_env_bool_parsing(monkeypatch):
    monkeypatch.setenv("X_FLAG", "off")
    assert config._get_bool("X_FLAG", True) is False
    monkeypatch.setenv("X_FLAG", "maybe")
    assert config._get_bool("X_FLAG", True) is True
