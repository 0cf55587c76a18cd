"""
Centralized settings and path configuration for the discount engine services.
"""
import logging
import os
from pathlib import Path
from dataclasses import dataclass
from typing import Optional


def get_project_root() -> Path:
    """Get the project root directory (where pyproject.toml lives)."""
    env_root = os.environ.get('QUICKSHOP_PROJECT_ROOT')
    if env_root:
        return Path(env_root).resolve()

    # Walk up from this file to find the project root
    current = Path(__file__).resolve()
    for parent in current.parents:
        if (parent / 'pyproject.toml').exists():
            return parent
    # Fallback to 3 levels up from this file
    return Path(__file__).resolve().parent.parent.parent.parent


@dataclass
class Settings:
    """Application settings with sensible defaults."""

    # Project paths
    project_root: Path

    # Product catalog (read-only stand-in for the product service)
    catalog_csv: Path

    # Discount definitions exported from the admin settings
    rules_csv: Path
    compiled_rules: Path

    # Store defaults
    currency: str = 'ILS'
    log_level: str = 'INFO'

    @classmethod
    def load(cls, project_root: Optional[Path] = None) -> 'Settings':
        """Load settings from the project structure and environment."""
        root = project_root or get_project_root()
        package_dir = root / 'src' / 'quickshop_pricing'

        return cls(
            project_root=root,
            catalog_csv=Path(os.environ.get('QUICKSHOP_CATALOG_CSV', package_dir / 'data' / 'catalog.csv')),
            rules_csv=Path(os.environ.get('QUICKSHOP_RULES_CSV', package_dir / 'rules' / 'rules.csv')),
            compiled_rules=Path(os.environ.get('QUICKSHOP_COMPILED_RULES', package_dir / 'rules' / 'compiled_rules.json')),
            currency=os.environ.get('QUICKSHOP_CURRENCY', 'ILS'),
            log_level=os.environ.get('QUICKSHOP_LOG_LEVEL', 'INFO').upper(),
        )


# Default settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings.load()
    return _settings


def configure_logging(settings: Optional[Settings] = None):
    """Set up root logging for entry points (API, scripts)."""
    settings = settings or get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )
