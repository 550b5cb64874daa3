"""
Configuration management for the outreach optimizer.
Handles application settings, environment variables, and solver defaults.
"""
import os
from typing import Optional
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path


class Environment(Enum):
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TESTING = "testing"


@dataclass
class DatabaseConfig:
    """Database configuration for SQLite/PostgreSQL and Redis."""
    url: str = "sqlite:///outreach.db"
    redis_url: str = "redis://localhost:6379/0"
    echo: bool = False

    # Cache settings
    cache_ttl: int = 3600  # 1 hour default TTL
    export_cache_ttl: int = 7200  # 2 hours for rendered plans
    memory_cache_max_entries: int = 1000  # in-memory fallback only


@dataclass
class OptimizerConfig:
    """Portfolio optimizer configuration."""
    default_solver: str = "greedy"
    default_max_iterations: int = 1000
    default_max_solve_time_ms: int = 30000
    default_exploration_budget_pct: float = 10.0
    default_planning_horizon_days: int = 30

    # Exploration / exploitation
    exploration_uncertainty_threshold: float = 0.6
    ucb_uncertainty_weight: float = 2.0
    default_uncertainty: float = 0.5

    # Collaborator fan-out
    candidate_concurrency: int = 16
    collaborator_timeout_seconds: float = 5.0

    # Constraint definitions
    default_contact_limit: int = 10
    constraint_definitions_path: Optional[str] = None

    # Result paging
    allocation_page_size: int = 100
    export_max_rows: int = 10000


@dataclass
class APIConfig:
    """API server configuration."""
    host: str = "0.0.0.0"
    port: int = 8000
    reload: bool = False

    # CORS settings
    cors_origins: list = field(default_factory=lambda: ["*"])
    cors_methods: list = field(default_factory=lambda: ["GET", "POST", "PUT", "DELETE"])


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    log_dir: str = "logs"
    max_file_size_mb: int = 10
    backup_count: int = 5

    # Structured logging
    use_json: bool = True


class Settings:
    """Main application settings class."""

    def __init__(self, env: Optional[Environment] = None):
        self.env = env or Environment(os.getenv("OUTREACH_ENV", "development"))
        self._load_environment_variables()
        self._initialize_configs()

    def _load_environment_variables(self):
        """Loads configuration from environment variables."""
        env_file = Path(".env")
        if env_file.exists():
            self._load_env_file(env_file)

    def _load_env_file(self, env_file: Path):
        """Loads environment variables from .env file."""
        try:
            with open(env_file) as f:
                for line in f:
                    line = line.strip()
                    if line and not line.startswith("#") and "=" in line:
                        key, value = line.split("=", 1)
                        os.environ.setdefault(key.strip(), value.strip())
        except OSError as e:
            print(f"Warning: Could not load .env file: {e}")

    def _initialize_configs(self):
        """Initializes configuration objects."""
        self.database = DatabaseConfig(
            url=os.getenv("DATABASE_URL", "sqlite:///outreach.db"),
            redis_url=os.getenv("REDIS_URL", "redis://localhost:6379/0"),
            echo=self.env == Environment.DEVELOPMENT and os.getenv("SQL_ECHO", "false").lower() == "true"
        )

        self.optimizer = OptimizerConfig(
            default_solver=os.getenv("DEFAULT_SOLVER", "greedy"),
            default_max_iterations=int(os.getenv("MAX_ITERATIONS", "1000")),
            default_max_solve_time_ms=int(os.getenv("MAX_SOLVE_TIME_MS", "30000")),
            candidate_concurrency=int(os.getenv("CANDIDATE_CONCURRENCY", "16")),
            collaborator_timeout_seconds=float(os.getenv("COLLABORATOR_TIMEOUT_SECONDS", "5.0")),
            constraint_definitions_path=os.getenv("CONSTRAINT_DEFINITIONS_PATH")
        )

        self.api = APIConfig(
            host=os.getenv("HOST", "0.0.0.0"),
            port=int(os.getenv("PORT", "8000")),
            reload=self.env == Environment.DEVELOPMENT
        )

        self.logging = LoggingConfig(
            level=os.getenv("LOG_LEVEL", "INFO"),
            log_dir=os.getenv("LOG_DIR", "logs"),
            use_json=os.getenv("USE_JSON_LOGGING", "true").lower() == "true"
        )

    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.env == Environment.DEVELOPMENT

    def setup_directories(self):
        """Creates necessary directories."""
        Path(self.logging.log_dir).mkdir(parents=True, exist_ok=True)


# Global settings instance
settings = Settings()
