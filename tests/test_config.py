"""Tests for configuration loading and personality profiles."""

import logging

import pytest

from rapsim.agents.personalities import (
    Personality, ActionType, PROFILES, build_profiles, get_profile
)
from rapsim.config import AppConfig, simulation_config_from_env
from rapsim.errors import ConfigurationError
from rapsim.simulation.config import SimulationConfig


class TestSimulationConfig:

    def test_defaults(self):
        config = SimulationConfig()
        assert config.population_size == 50
        assert config.target_online == 15
        assert config.tick_interval_seconds == 5.0

    def test_target_online_rounds_down(self):
        assert SimulationConfig(population_size=7, online_fraction=0.5).target_online == 3

    @pytest.mark.parametrize("overrides", [
        {"online_fraction": 1.5},
        {"action_probability": -0.1},
        {"population_size": -1},
        {"session_min_minutes": 20, "session_max_minutes": 10},
        {"tick_interval_seconds": 0},
        {"starting_cash_min": 10, "starting_cash_max": 5},
    ])
    def test_invalid_values(self, overrides):
        with pytest.raises(ConfigurationError):
            SimulationConfig(**overrides)

    def test_dict_round_trip(self):
        config = SimulationConfig(name="run", population_size=12,
                                  personality_overrides={"trader": {"accept_threshold": 1.2}})
        assert SimulationConfig.from_dict(config.to_dict()) == config


class TestEnvironment:

    def test_reads_market_variables(self):
        config = simulation_config_from_env({
            "MARKET_POPULATION_SIZE": "20",
            "MARKET_ONLINE_FRACTION": "0.5",
            "MARKET_TICK_INTERVAL": "2.5",
            "MARKET_SEED": "9",
            "MARKET_PERSONALITIES": '{"trader": {"accept_threshold": 1.2}}',
        })
        assert config.population_size == 20
        assert config.target_online == 10
        assert config.tick_interval_seconds == 2.5
        assert config.seed == 9
        assert config.personality_overrides == {"trader": {"accept_threshold": 1.2}}

    def test_empty_environment_gives_defaults(self):
        assert simulation_config_from_env({}) == SimulationConfig()

    def test_bad_number(self):
        with pytest.raises(ConfigurationError):
            simulation_config_from_env({"MARKET_POPULATION_SIZE": "many"})

    def test_bad_personalities_json(self):
        with pytest.raises(ConfigurationError):
            simulation_config_from_env({"MARKET_PERSONALITIES": "{not json"})

    def test_app_config_load(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "sqlite://")
        monkeypatch.setenv("LOG_LEVEL", "debug")
        monkeypatch.setenv("LOG_TO_FILE", "false")
        monkeypatch.setenv("MARKET_POPULATION_SIZE", "8")

        config = AppConfig.load()

        assert config.database_url == "sqlite://"
        assert config.log_level == logging.DEBUG
        assert config.log_to_file is False
        assert config.simulation.population_size == 8

    def test_unknown_log_level(self, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "chatty")
        with pytest.raises(ConfigurationError):
            AppConfig.load()


class TestProfiles:

    def test_every_personality_has_a_profile(self):
        assert set(PROFILES) == set(Personality)
        for profile in PROFILES.values():
            assert set(profile.weights) == set(ActionType)
            assert profile.total_weight > 0

    def test_override_applied(self):
        profiles = build_profiles({"trader": {"accept_threshold": 1.2, "weights": {"trade_send": 10}}})
        trader = profiles[Personality.TRADER]
        assert trader.accept_threshold == 1.2
        assert trader.weights[ActionType.TRADE_SEND] == 10
        assert trader.weights[ActionType.BUY_NEW] == PROFILES[Personality.TRADER].weights[ActionType.BUY_NEW]
        assert profiles[Personality.WHALE] is PROFILES[Personality.WHALE]

    def test_unknown_personality_override(self):
        with pytest.raises(ConfigurationError):
            build_profiles({"gambler": {"accept_threshold": 1.0}})

    def test_inconsistent_override(self):
        with pytest.raises(ConfigurationError):
            build_profiles({"trader": {"decline_threshold": 2.0}})

    def test_unknown_tag_degrades_to_casual(self):
        assert get_profile("gambler").personality == Personality.CASUAL
        assert get_profile(None).personality == Personality.CASUAL
        assert get_profile("whale").personality == Personality.WHALE
