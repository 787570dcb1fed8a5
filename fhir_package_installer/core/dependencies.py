from pathlib import Path
from typing import Optional
import os

from fhir_package_installer.domain.models import DEFAULT_REGISTRY_URL, InstallerConfig

CACHE_PATH_ENV_VAR = "FPI_CACHE_PATH"
REGISTRY_URL_ENV_VAR = "FPI_REGISTRY_URL"
REGISTRY_TOKEN_ENV_VAR = "FPI_REGISTRY_TOKEN"
SKIP_EXAMPLES_ENV_VAR = "FPI_SKIP_EXAMPLES"

_DEFAULT_CACHE_PATH = Path.home() / ".fhir" / "packages"

_TRUTHY = {"1", "true", "yes", "on"}


def get_default_cache_path() -> Path:
    """
    Determine the package cache directory.

    Priority:
    1. Environment variable FPI_CACHE_PATH
    2. '~/.fhir/packages' (the well-known FHIR package cache)
    """
    env_path = os.environ.get(CACHE_PATH_ENV_VAR)
    if env_path:
        return Path(env_path).expanduser()
    return _DEFAULT_CACHE_PATH


def load_config_from_env(cache_path: Optional[Path] = None) -> InstallerConfig:
    """Build an InstallerConfig from FPI_* environment variables."""
    return InstallerConfig(
        registry_url=os.environ.get(REGISTRY_URL_ENV_VAR) or DEFAULT_REGISTRY_URL,
        registry_token=os.environ.get(REGISTRY_TOKEN_ENV_VAR) or None,
        cache_path=cache_path or get_default_cache_path(),
        skip_examples=os.environ.get(SKIP_EXAMPLES_ENV_VAR, "").strip().lower() in _TRUTHY,
    )
