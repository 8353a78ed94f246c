"""Configuration management."""

from pathlib import Path
import os
from typing import Optional

from dotenv import dotenv_values
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load .env for local runs only where values are missing from the environment
BASE_DIR = Path(__file__).resolve().parent.parent
env_file = BASE_DIR / ".env"

if env_file.exists():
    file_env = dotenv_values(env_file)
    for k, v in file_env.items():
        if k not in os.environ and v is not None:
            os.environ[k] = v


class Settings(BaseSettings):
    """Application settings pulled from environment variables."""

    model_config = SettingsConfigDict(env_prefix="PY_ISLAND_", extra="ignore")

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(default="console", description="Logging format (console or json)")

    # Generation
    default_seed: Optional[str] = Field(default=None, description="Seed used when none is given")
    terrain_rings: int = Field(default=240, ge=2, description="Rings in the radial surface mesh")
    boundary_resolution: int = Field(
        default=256, ge=8, description="Segments around the surface boundary"
    )
    skirt_rings: int = Field(default=32, ge=1, description="Interpolation rings in the ground-cover skirt")


class IslandParameters(BaseModel):
    """User-facing island parameters, range checked on construction."""

    island_radius: float = Field(20.0, ge=3, le=500, description="Base radius of the inner anchor ring")
    shoreline_offset: float = Field(5.0, ge=0, le=100, description="Outward offset of the shoreline ring")
    shoreline_height: float = Field(0.2, ge=0, le=50, description="Minimum shoreline height")
    contour_height: float = Field(2.0, ge=0, le=100, description="Base terrain height")
    noise_strength: float = Field(1.5, ge=0, le=50, description="Height noise amplitude")
    noise_scale: float = Field(0.08, gt=0, le=10, description="Height noise frequency")
    surface_smoothing: int = Field(4, ge=0, le=64, description="Half-width of the contour height moving average")
    rock_height_scale: float = Field(1.0, gt=0, le=20, description="Vertical scale of anchor rocks")

    foliage_band_width: float = Field(4.0, ge=0, le=100, description="Width of the foliage band")
    foliage_density: float = Field(1.0, ge=0, le=100, description="Instances per 100 square units")
    foliage_max_count: Optional[int] = Field(None, ge=0, description="Hard cap on foliage instances")
    foliage_max_slope: float = Field(35.0, ge=0, le=90, description="Steepest slope accepting foliage, degrees")
    foliage_scale: float = Field(1.0, gt=0, le=50, description="Base foliage scale")

    path_points: int = Field(20, ge=0, le=1000, description="Target number of path nodes")
    path_loop_percentage: int = Field(20, ge=0, le=100, description="Share of non-tree edges added as loops")
    path_width: float = Field(1.0, gt=0, le=20, description="Path ribbon width")

    lake_radius: float = Field(3.0, gt=0, le=100, description="Base radius for new lakes")
    lake_depth: float = Field(1.0, gt=0, le=50, description="Depth for new lakes")
    mud_puddle_radius: float = Field(2.0, gt=0, le=100, description="Base radius for new mud puddles")

    @property
    def outer_radius(self) -> float:
        return self.island_radius + self.shoreline_offset

    @property
    def loop_fraction(self) -> float:
        return self.path_loop_percentage / 100.0


settings = Settings()
