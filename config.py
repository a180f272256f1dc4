"""
Configuration module for the job card workflow server.

Provides centralized configuration management with support for:
- Environment variables
- Default values
- Path resolution
- Logging configuration
"""

import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# config.py sits at the repository root, next to .env
_env_path = Path(__file__).resolve().parent / ".env"
load_dotenv(dotenv_path=_env_path)


def _parse_bool(env_var: str, default: bool) -> bool:
    """Parse a boolean value from an environment variable."""
    value = os.getenv(env_var)
    if value is None:
        return default
    return value.lower() in ("true", "1", "t", "y", "yes")


def _parse_int(env_var: str, default: int, minimum: int = 1) -> int:
    """Parse a positive integer from an environment variable, falling back on bad input."""
    value = os.getenv(env_var)
    if value is None or not value.strip():
        return default
    try:
        parsed = int(value)
    except ValueError:
        return default
    return max(parsed, minimum)


class Config:
    """
    Configuration class for workflow server settings.

    Supports configuration via environment variables (and .env file) with sensible defaults.
    All relative paths are resolved against the repository root.
    """

    def __init__(self):
        """Initialize configuration from environment variables and defaults."""
        self._repo_root = self._find_repo_root()

        # Database configuration
        self.db_path = self._resolve_db_path()

        # Workflow definition catalog
        self.catalog_path = self._resolve_repo_path(
            os.getenv("JOBCARD_CATALOG_PATH", "data/catalog/sequences.yaml")
        )
        # Empty string disables the fallback sequence
        default_type = os.getenv("JOBCARD_DEFAULT_PRODUCT_TYPE", "Offset").strip()
        self.default_product_type: Optional[str] = default_type or None

        # Notification delivery
        self.notify_async = _parse_bool("JOBCARD_NOTIFY_ASYNC", True)
        self.notify_workers = _parse_int("JOBCARD_NOTIFY_WORKERS", 4)

        # Logging configuration
        self.log_level = os.getenv("JOBCARD_LOG_LEVEL", "INFO").upper()
        self.log_file = self._resolve_log_path()

        # Server configuration
        self.server_name = os.getenv("JOBCARD_SERVER_NAME", "jobcard-workflow-server")

    def _find_repo_root(self) -> Path:
        """Return the directory holding this module (the repository root)."""
        return Path(__file__).resolve().parent

    def _resolve_repo_path(self, value: str) -> Path:
        path = Path(value)
        if path.is_absolute():
            return path
        return self._repo_root / path

    def _resolve_db_path(self) -> Path:
        """
        Resolve the database path from environment or default.

        Resolution order:
        1. JOBCARD_DB environment variable (absolute or relative)
        2. JOBCARD_ROOT/data/jobcards.db
        3. Default: <repo_root>/data/jobcards.db

        Returns:
            Resolved absolute Path to database
        """
        db_env = os.getenv("JOBCARD_DB")
        if db_env:
            return self._resolve_repo_path(db_env)

        root_env = os.getenv("JOBCARD_ROOT")
        if root_env:
            return Path(root_env) / "data" / "jobcards.db"

        return self._repo_root / "data" / "jobcards.db"

    def _resolve_log_path(self) -> Optional[Path]:
        """
        Resolve the log file path from environment.

        Returns:
            Path to log file, or None for stderr-only logging
        """
        log_env = os.getenv("JOBCARD_LOG_FILE")
        if not log_env:
            return None
        return self._resolve_repo_path(log_env)

    def setup_logging(self):
        """
        Configure logging based on configuration settings.

        Sets up logging to stderr and optionally to a file.
        Log level is controlled by JOBCARD_LOG_LEVEL.
        """
        numeric_level = getattr(logging, self.log_level, logging.INFO)

        formatter = logging.Formatter(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s", datefmt="%Y-%m-%d %H:%M:%S"
        )

        root_logger = logging.getLogger()
        root_logger.setLevel(numeric_level)

        # Remove existing handlers to avoid duplicates
        root_logger.handlers.clear()

        stderr_handler = logging.StreamHandler()
        stderr_handler.setLevel(numeric_level)
        stderr_handler.setFormatter(formatter)
        root_logger.addHandler(stderr_handler)

        if self.log_file:
            self.log_file.parent.mkdir(parents=True, exist_ok=True)

            file_handler = logging.FileHandler(self.log_file)
            file_handler.setLevel(numeric_level)
            file_handler.setFormatter(formatter)
            root_logger.addHandler(file_handler)

            logging.info(f"Logging to file: {self.log_file}")

        logging.info(f"Log level set to: {self.log_level}")
        logging.info(f"Database path: {self.db_path}")
        logging.info(f"Workflow catalog: {self.catalog_path}")

    def get_db_path_str(self) -> str:
        """Get database path as string for use in tool handlers."""
        return str(self.db_path)

    def validate(self) -> list[str]:
        """
        Validate configuration and return any warnings.

        Returns:
            List of warning messages (empty if all valid)
        """
        warnings = []

        if not self.db_path.exists():
            warnings.append(
                f"Database file not found: {self.db_path}. "
                "The server will start but tools will fail until the database is created."
            )

        if not self.catalog_path.exists():
            warnings.append(
                f"Workflow catalog not found: {self.catalog_path}. "
                "Job workflow generation will fail for every product type."
            )

        if self.log_file:
            log_dir = self.log_file.parent
            if not log_dir.exists():
                try:
                    log_dir.mkdir(parents=True, exist_ok=True)
                except OSError as e:
                    warnings.append(f"Cannot create log directory {log_dir}: {e}")
            elif not os.access(log_dir, os.W_OK):
                warnings.append(f"Log directory not writable: {log_dir}")

        return warnings


# Global configuration instance
config = Config()


def get_config() -> Config:
    """
    Get the global configuration instance.

    Returns:
        Global Config instance
    """
    return config
