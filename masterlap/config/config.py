"""
Configuration module for masterlap
Environment-based defaults for run parameters, portable across machines
"""

import os
from dataclasses import dataclass, asdict
from typing import Optional


@dataclass
class RunParameters:
    """Tunable parameters consumed by the reconstruction/alignment pipeline"""
    expected_lap_length: float = 0.0     # meters, 0 = unknown
    lap_tolerance: float = 25.0          # meters
    lap_count: int = 0                   # known lap count, 0 = unknown
    min_lap_spacing: float = 200.0       # meters between lap boundaries
    start_finish_radius: float = 10.0    # meters
    master_samples: int = 4000           # resampled points on the master path
    use_master: bool = True              # average all laps vs first lap only
    force_sprint: bool = False           # treat every session as point-to-point
    sector_count: int = 3
    lap_prune_ratio: float = 0.8         # fraction of median lap length kept by proximity pruning
    max_workers: Optional[int] = None
    use_processes: bool = False

    def validate(self) -> None:
        """Raise ValueError for values no strategy can work with."""
        if self.expected_lap_length < 0:
            raise ValueError("expected_lap_length must be >= 0")
        if self.lap_tolerance < 0:
            raise ValueError("lap_tolerance must be >= 0")
        if self.lap_count < 0:
            raise ValueError("lap_count must be >= 0")
        if self.min_lap_spacing < 0:
            raise ValueError("min_lap_spacing must be >= 0")
        if self.master_samples < 2:
            raise ValueError("master_samples must be >= 2")
        if self.sector_count < 0:
            raise ValueError("sector_count must be >= 0")
        if not 0.0 <= self.lap_prune_ratio <= 1.0:
            raise ValueError("lap_prune_ratio must be within [0, 1]")
        if self.max_workers is not None and self.max_workers < 1:
            raise ValueError("max_workers must be >= 1")

    def to_dict(self) -> dict:
        return asdict(self)


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, default))


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, default))


def _env_bool(name: str, default: bool) -> bool:
    return os.getenv(name, str(default)).lower() in ('1', 'true', 'yes', 'on')


class Config:
    """Main configuration class with environment variable overrides"""

    LOG_LEVEL = os.getenv('MASTERLAP_LOG_LEVEL', 'INFO')

    # Run parameter defaults
    LAP_LENGTH = _env_float('MASTERLAP_LAP_LENGTH', 0.0)
    LAP_TOLERANCE = _env_float('MASTERLAP_LAP_TOLERANCE', 25.0)
    LAP_COUNT = _env_int('MASTERLAP_LAP_COUNT', 0)
    MIN_LAP_SPACING = _env_float('MASTERLAP_MIN_LAP_SPACING', 200.0)
    START_FINISH_RADIUS = _env_float('MASTERLAP_START_FINISH_RADIUS', 10.0)
    MASTER_SAMPLES = _env_int('MASTERLAP_MASTER_SAMPLES', 4000)
    USE_MASTER = _env_bool('MASTERLAP_USE_MASTER', True)
    FORCE_SPRINT = _env_bool('MASTERLAP_SPRINT', False)
    SECTOR_COUNT = _env_int('MASTERLAP_SECTORS', 3)
    MAX_WORKERS = int(os.getenv('MASTERLAP_WORKERS')) if os.getenv('MASTERLAP_WORKERS') else None

    @classmethod
    def run_parameters(cls, **overrides) -> RunParameters:
        """Build RunParameters from the configured defaults plus explicit overrides"""
        params = RunParameters(
            expected_lap_length=cls.LAP_LENGTH,
            lap_tolerance=cls.LAP_TOLERANCE,
            lap_count=cls.LAP_COUNT,
            min_lap_spacing=cls.MIN_LAP_SPACING,
            start_finish_radius=cls.START_FINISH_RADIUS,
            master_samples=cls.MASTER_SAMPLES,
            use_master=cls.USE_MASTER,
            force_sprint=cls.FORCE_SPRINT,
            sector_count=cls.SECTOR_COUNT,
            max_workers=cls.MAX_WORKERS,
        )
        for key, value in overrides.items():
            if not hasattr(params, key):
                raise ValueError(f"Unknown run parameter: {key}")
            setattr(params, key, value)
        params.validate()
        return params


class DevelopmentConfig(Config):
    """Development-specific configuration"""
    LOG_LEVEL = 'DEBUG'


class TestConfig(Config):
    """Test-specific configuration"""
    MASTER_SAMPLES = 400
    MAX_WORKERS = 2


# Configuration selection
config_map = {
    'development': DevelopmentConfig,
    'testing': TestConfig,
    'default': Config,
}


def get_config(config_name: Optional[str] = None) -> type:
    """Get configuration class based on environment"""
    if config_name is None:
        config_name = os.getenv('MASTERLAP_ENV', 'default')

    return config_map.get(config_name, Config)
