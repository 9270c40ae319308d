"""
Node configuration.

Each section of the YAML file maps to one pydantic model below. Values are
validated once at startup and stay fixed for the lifetime of the node.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Literal, Mapping, Optional

from pydantic import BaseModel, Field, ValidationError
import yaml


# -----------------------
# Typed config structures
# -----------------------


class RelocalizationConfig(BaseModel):
    num_threads: int = Field(default=4, ge=1, description="Worker threads for neighbor search and reduction")
    num_neighbors: int = Field(default=20, ge=1, description="Neighborhood size for covariance estimation")
    global_leaf_size: float = Field(default=0.25, gt=0.0, description="Voxel size (m) for the reference map")
    registered_leaf_size: float = Field(default=0.25, gt=0.0, description="Voxel size (m) for incoming scans")
    max_dist_sq: float = Field(default=1.0, gt=0.0, description="Correspondence rejection threshold (m^2)")
    map_frame_id: str = Field(default="map")
    odom_frame_id: str = Field(default="odom")
    prior_pcd_file: str = Field(default="", description="Path to the prior reference map")


class RegistrationConfig(BaseModel):
    max_iterations: int = Field(default=20, ge=1)
    rotation_eps_deg: float = Field(
        default=0.1,
        gt=0.0,
        description="Rotation step (degrees) below which GICP is considered converged",
    )
    translation_eps: float = Field(
        default=1e-3,
        gt=0.0,
        description="Translation step (meters) below which GICP is considered converged",
    )
    lm_init_lambda: float = Field(default=1e-3, ge=0.0)
    lm_lambda_factor: float = Field(default=10.0, gt=1.0)
    lm_max_inner_iterations: int = Field(default=10, ge=1)


class SchedulerConfig(BaseModel):
    registration_period_s: float = Field(default=0.5, gt=0.0, description="Alignment period (2 Hz)")
    publish_period_s: float = Field(default=0.05, gt=0.0, description="Transform publish period (20 Hz)")


class ReplayConfig(BaseModel):
    scan_dir: Optional[str] = Field(default=None, description="Directory of scan files to replay")
    rate_hz: float = Field(default=10.0, gt=0.0)
    frame_id: str = Field(default="odom")
    loop: bool = Field(default=False)


class LoggingConfig(BaseModel):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(default="INFO")
    file: Optional[str] = Field(default=None)


class AppConfig(BaseModel):
    relocalization: RelocalizationConfig = Field(default_factory=RelocalizationConfig)
    registration: RegistrationConfig = Field(default_factory=RegistrationConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    replay: ReplayConfig = Field(default_factory=ReplayConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


# -----------------------
# Loader
# -----------------------


DEFAULT_CONFIG_RELPATH = Path("config") / "default.yaml"


def _project_root() -> Path:
    # src/gicp_relocalization/utils/config.py -> repository root
    return Path(__file__).resolve().parents[3]


def _merge(base: Dict[str, Any], overrides: Mapping[str, Any]) -> Dict[str, Any]:
    """Recursively merge ``overrides`` into a copy of ``base``."""
    merged = dict(base)
    for key, value in overrides.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), Mapping):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(
    path: Optional[str | Path] = None,
    *,
    allow_missing: bool = True,
    overrides: Optional[Mapping[str, Any]] = None,
) -> AppConfig:
    """
    Read the YAML configuration of the node and validate it.

    Keys absent from the file keep their model defaults, so a file only needs
    the sections it changes.

    Args:
        path: YAML file; ``config/default.yaml`` under the repository root if None.
        allow_missing: Fall back to the built-in defaults when the file does not exist.
        overrides: Nested mapping applied on top of the file, e.g.
            ``{"relocalization": {"prior_pcd_file": "map.pcd"}}``.

    Returns:
        Validated AppConfig

    Raises:
        FileNotFoundError: If the file is missing and ``allow_missing`` is False
        ValueError: If a value fails validation
    """
    cfg_path = Path(path) if path is not None else _project_root() / DEFAULT_CONFIG_RELPATH

    raw: Dict[str, Any] = {}
    if cfg_path.exists():
        with cfg_path.open("r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    elif not allow_missing:
        raise FileNotFoundError(f"Config file not found: {cfg_path}")

    if overrides:
        raw = _merge(raw, overrides)

    try:
        return AppConfig.model_validate(raw)
    except ValidationError as e:
        raise ValueError(f"Invalid configuration ({cfg_path}): {e}") from e
