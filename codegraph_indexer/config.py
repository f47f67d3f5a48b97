"""
Configuration — loads settings from .codegraph.yaml, environment variables,
and built-in defaults (in that priority order: env > YAML > defaults).
"""

import os

import yaml

from .errors import ConfigurationError


_DEFAULTS = {
    "api_key": "",
    "base_url": "https://memory.papr.ai",
    "timeout": 30.0,
    "max_retries": 3,
    "retry_delay": 1.0,
    "publish_delay": 0.1,
    "schema_cache_file": os.path.join("~", ".codegraph", "schema-cache.json"),
    "schema_cache_ttl_days": 30,
    "include_tests": False,
    "include_generated": False,
    "include_source": True,
    "max_errors": 50,
    "manifest_dir": ".codegraph",
    "extra_ignore_dirs": [],
    "client_type": "codegraph_indexer",
}

# Config file search locations
_CONFIG_FILENAMES = [".codegraph.yaml", ".codegraph.yml"]


def _find_config_file(explicit_path: str | None = None) -> str | None:
    """Find the config file. Checks explicit path, CWD, then user home."""
    if explicit_path:
        if os.path.isfile(explicit_path):
            return explicit_path
        return None

    search_dirs = [os.getcwd(), os.path.expanduser("~")]
    for d in search_dirs:
        for name in _CONFIG_FILENAMES:
            path = os.path.join(d, name)
            if os.path.isfile(path):
                return path
    return None


def _load_yaml(path: str) -> dict:
    """Load YAML file, returns empty dict on failure."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
        return data if isinstance(data, dict) else {}
    except (OSError, yaml.YAMLError):
        return {}


class Config:
    """Indexer configuration.

    Settings are resolved in priority order:
    1. Environment variables
    2. .codegraph.yaml config file
    3. Built-in defaults
    """

    def __init__(self, yaml_data: dict | None = None):
        yd = yaml_data or {}

        # Helper: env var > yaml > default
        def _get(env_key: str, yaml_key: str, default, cast=str):
            env_val = os.getenv(env_key)
            if env_val is not None:
                return cast(env_val)
            yaml_val = yd.get(yaml_key)
            if yaml_val is not None:
                return cast(yaml_val)
            return default

        def _get_bool(env_key: str, yaml_key: str, default: bool) -> bool:
            env_val = os.getenv(env_key)
            if env_val is not None:
                return env_val.lower() == "true"
            yaml_val = yd.get(yaml_key)
            if yaml_val is not None:
                return bool(yaml_val)
            return default

        # Knowledge store connection
        store_section = yd.get("store", {}) if isinstance(yd.get("store"), dict) else {}
        self.API_KEY = os.getenv("KNOWLEDGE_STORE_API_KEY") or str(
            store_section.get("api_key", _DEFAULTS["api_key"]) or "")
        self.BASE_URL = (os.getenv("KNOWLEDGE_STORE_URL") or str(
            store_section.get("base_url", _DEFAULTS["base_url"]))).rstrip("/")

        self.TIMEOUT = _get("KNOWLEDGE_STORE_TIMEOUT", "timeout",
                            _DEFAULTS["timeout"], cast=float)
        self.MAX_RETRIES = _get("KNOWLEDGE_STORE_MAX_RETRIES", "max_retries",
                                _DEFAULTS["max_retries"], cast=int)
        self.RETRY_DELAY = _get("KNOWLEDGE_STORE_RETRY_DELAY", "retry_delay",
                                _DEFAULTS["retry_delay"], cast=float)
        self.CLIENT_TYPE = _get("CODEGRAPH_CLIENT_TYPE", "client_type",
                                _DEFAULTS["client_type"])

        # Publish throttling between files
        self.PUBLISH_DELAY = _get("CODEGRAPH_PUBLISH_DELAY", "publish_delay",
                                  _DEFAULTS["publish_delay"], cast=float)

        # Local schema registration cache
        self.SCHEMA_CACHE_FILE = os.path.expanduser(
            _get("CODEGRAPH_SCHEMA_CACHE", "schema_cache_file",
                 _DEFAULTS["schema_cache_file"]))
        self.SCHEMA_CACHE_TTL_DAYS = _get("CODEGRAPH_SCHEMA_CACHE_TTL_DAYS",
                                          "schema_cache_ttl_days",
                                          _DEFAULTS["schema_cache_ttl_days"],
                                          cast=int)

        # File selection
        self.INCLUDE_TESTS = _get_bool("CODEGRAPH_INCLUDE_TESTS", "include_tests",
                                       _DEFAULTS["include_tests"])
        self.INCLUDE_GENERATED = _get_bool("CODEGRAPH_INCLUDE_GENERATED",
                                           "include_generated",
                                           _DEFAULTS["include_generated"])
        self.EXTRA_IGNORE_DIRS: list[str] = yd.get("extra_ignore_dirs",
                                                   _DEFAULTS["extra_ignore_dirs"])
        if not isinstance(self.EXTRA_IGNORE_DIRS, list):
            self.EXTRA_IGNORE_DIRS = []

        # Document rendering / reporting
        self.INCLUDE_SOURCE = _get_bool("CODEGRAPH_INCLUDE_SOURCE", "include_source",
                                        _DEFAULTS["include_source"])
        self.MAX_ERRORS = _get("CODEGRAPH_MAX_ERRORS", "max_errors",
                               _DEFAULTS["max_errors"], cast=int)

        # Manifest location, relative to the project root
        self.MANIFEST_DIR = _get("CODEGRAPH_MANIFEST_DIR", "manifest_dir",
                                 _DEFAULTS["manifest_dir"])

    def require_credentials(self) -> None:
        """Raise :class:`ConfigurationError` unless an API key is configured."""
        if not self.API_KEY:
            raise ConfigurationError(
                "KNOWLEDGE_STORE_API_KEY is not set. Export it or add "
                "store.api_key to .codegraph.yaml."
            )

    @classmethod
    def load(cls, config_path: str | None = None) -> "Config":
        """Load config from YAML file (if found) + env vars + defaults."""
        path = _find_config_file(config_path)
        yaml_data = _load_yaml(path) if path else {}
        return cls(yaml_data)
