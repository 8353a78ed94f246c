"""Tests for settings and island parameters."""

import pytest
import structlog
from pydantic import ValidationError

from py_island.config import IslandParameters, Settings
from py_island.core.terrain_mesh import TerrainOptions
from py_island.utils.log import configure_logging


class TestIslandParameters:
    def test_defaults(self):
        params = IslandParameters()
        assert params.island_radius == 20.0
        assert params.outer_radius == 25.0
        assert params.loop_fraction == pytest.approx(0.2)

    def test_out_of_range(self):
        with pytest.raises(ValidationError):
            IslandParameters(island_radius=-1)
        with pytest.raises(ValidationError):
            IslandParameters(path_loop_percentage=150)


class TestSettings:
    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("PY_ISLAND_TERRAIN_RINGS", "12")
        monkeypatch.setenv("PY_ISLAND_DEFAULT_SEED", "from-env")
        settings = Settings()
        assert settings.terrain_rings == 12
        assert settings.default_seed == "from-env"

    def test_terrain_options_default_from_settings(self, monkeypatch):
        monkeypatch.setattr("py_island.config.settings.terrain_rings", 17)
        assert TerrainOptions().num_rings == 17


class TestLogging:
    def test_configure_json(self):
        configure_logging(level="DEBUG", fmt="json")
        structlog.get_logger().debug("configured", check=True)
        configure_logging(level="INFO", fmt="console")
