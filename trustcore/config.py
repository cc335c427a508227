"""
Configuration module for TrustCore.

Centralizes all configuration with environment variable support,
validation, and caching for performance.
"""

import json
import os
import threading
import time
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, FrozenSet, Optional

# ============================================================
# Environment Configuration
# ============================================================

ENV = os.getenv("TRUSTCORE_ENV", "dev")  # dev|stage|prod

# Deployment identity
NETWORK_ID = os.getenv("TRUSTCORE_NETWORK_ID", "trustcore-dev")
VERIFIER_ID = os.getenv("TRUSTCORE_VERIFIER_ID", "trustcore-verifier-001")
PROVIDER_ID = os.getenv("TRUSTCORE_PROVIDER_ID", "signed-claims")
SCHEMA_ID = os.getenv("TRUSTCORE_SCHEMA_ID", "trustcore.capability-grant")
SCHEMA_VERSION = os.getenv("TRUSTCORE_SCHEMA_VERSION", "1")
MAX_CLAIM_AGE_SECONDS = int(os.getenv("TRUSTCORE_MAX_CLAIM_AGE_SECONDS", "0"))  # 0 = unlimited

# Administrative identities
INITIAL_AUTHORITY = os.getenv("TRUSTCORE_INITIAL_AUTHORITY", "bootstrap-authority")
EMERGENCY_AUTHORITY = os.getenv("TRUSTCORE_EMERGENCY_AUTHORITY", "") or None
ISSUER_ALLOWLIST = frozenset(i for i in os.getenv("TRUSTCORE_ISSUER_ALLOWLIST", "").split(",") if i)

# Emergency unlock window, counted from deployment
EMERGENCY_WINDOW_SECONDS = int(os.getenv("TRUSTCORE_EMERGENCY_WINDOW_SECONDS", str(180 * 24 * 3600)))

# Resolver budgets (seconds)
DEFAULT_RESOLVER_BUDGET = float(os.getenv("TRUSTCORE_DEFAULT_RESOLVER_BUDGET", "0.5"))
MAX_RESOLVER_BUDGET = float(os.getenv("TRUSTCORE_MAX_RESOLVER_BUDGET", "5.0"))

# Limits
MAX_BATCH_SIZE = int(os.getenv("TRUSTCORE_MAX_BATCH_SIZE", "50"))
MAX_PAGE_SIZE = int(os.getenv("TRUSTCORE_MAX_PAGE_SIZE", "100"))
MAX_ADDITIONAL_RESOLVERS = int(os.getenv("TRUSTCORE_MAX_ADDITIONAL_RESOLVERS", "10"))

# Rate limits (requests per minute) for the HTTP wrapper
MUTATE_RPM = int(os.getenv("MUTATE_RPM", "120"))

# Paths
JOURNAL_PATH = os.getenv("TRUSTCORE_JOURNAL_PATH", ":memory:")
CONFIG_PATH = os.getenv("TRUSTCORE_CONFIG_PATH", "")
ISSUER_KEYS_PATH = os.getenv("TRUSTCORE_ISSUER_KEYS_PATH", "")

# Logging
LOG_LEVEL = os.getenv("TRUSTCORE_LOG_LEVEL", "INFO")
LOG_JSON = os.getenv("TRUSTCORE_LOG_JSON", "1").lower() in ("1", "true", "yes")

# Cache TTL (seconds)
CONFIG_CACHE_TTL = int(os.getenv("CONFIG_CACHE_TTL", "60"))


@dataclass(frozen=True)
class CoreConfig:
    """
    Deployment settings for one TrustCore instance.

    Defaults come from the environment; tests and embedders build their
    own with `CoreConfig(...)` or `with_changes(...)`.
    """
    network_id: str = NETWORK_ID
    verifier_id: str = VERIFIER_ID
    provider_id: str = PROVIDER_ID
    schema_id: str = SCHEMA_ID
    schema_version: str = SCHEMA_VERSION
    issuer_allowlist: FrozenSet[str] = ISSUER_ALLOWLIST
    max_claim_age_seconds: int = MAX_CLAIM_AGE_SECONDS
    emergency_authority: Optional[str] = EMERGENCY_AUTHORITY
    emergency_window_seconds: int = EMERGENCY_WINDOW_SECONDS
    default_resolver_budget: float = DEFAULT_RESOLVER_BUDGET
    max_resolver_budget: float = MAX_RESOLVER_BUDGET
    max_batch_size: int = MAX_BATCH_SIZE
    max_page_size: int = MAX_PAGE_SIZE
    max_additional_resolvers: int = MAX_ADDITIONAL_RESOLVERS
    journal_path: str = JOURNAL_PATH

    def with_changes(self, **changes: Any) -> "CoreConfig":
        return replace(self, **changes)


# ============================================================
# Cached Configuration Loaders
# ============================================================

class CachedConfig:
    """
    Thread-safe cached configuration loader.
    Reloads configuration files periodically based on TTL.
    """

    def __init__(self, ttl_seconds: int = 60):
        self._cache: Dict[str, Any] = {}
        self._timestamps: Dict[str, float] = {}
        self._lock = threading.RLock()
        self._ttl = ttl_seconds

    def _is_stale(self, key: str) -> bool:
        if key not in self._timestamps:
            return True
        return (time.time() - self._timestamps[key]) > self._ttl

    def get_json(self, path: str, force_reload: bool = False) -> Dict[str, Any]:
        """
        Load JSON file with caching.
        Returns cached version if within TTL, otherwise reloads.
        """
        with self._lock:
            if not force_reload and path in self._cache and not self._is_stale(path):
                return self._cache[path]

            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)

            self._cache[path] = data
            self._timestamps[path] = time.time()
            return data

    def invalidate(self, path: Optional[str] = None) -> None:
        """Invalidate cache for a specific path or all paths."""
        with self._lock:
            if path:
                self._cache.pop(path, None)
                self._timestamps.pop(path, None)
            else:
                self._cache.clear()
                self._timestamps.clear()


# Global cached config instance
_config_cache = CachedConfig(ttl_seconds=CONFIG_CACHE_TTL)


def load_json_cached(path: str) -> Dict[str, Any]:
    """Load JSON file with caching."""
    return _config_cache.get_json(path)


def invalidate_config_cache() -> None:
    """Invalidate all cached configuration."""
    _config_cache.invalidate()


def load_core_config(overrides_path: Optional[str] = None) -> CoreConfig:
    """
    Build a CoreConfig from the environment, optionally overlaid with a
    JSON file of field overrides.
    """
    config = CoreConfig()
    if not overrides_path:
        return config
    overrides = dict(load_json_cached(overrides_path))
    if "issuer_allowlist" in overrides:
        overrides["issuer_allowlist"] = frozenset(overrides["issuer_allowlist"])
    return config.with_changes(**overrides)


# ============================================================
# Validation
# ============================================================

def validate_config() -> Dict[str, bool]:
    """
    Validate that configured files exist.
    Returns dict of name -> exists.
    """
    paths = {}
    if CONFIG_PATH:
        paths["config"] = CONFIG_PATH
    if ISSUER_KEYS_PATH:
        paths["issuer_keys"] = ISSUER_KEYS_PATH
    if JOURNAL_PATH != ":memory:":
        paths["journal_dir"] = str(Path(JOURNAL_PATH).parent)
    return {name: Path(path).exists() for name, path in paths.items()}


# ============================================================
# Feature Flags
# ============================================================

def is_production() -> bool:
    """Check if running in production mode."""
    return ENV == "prod"


def is_debug() -> bool:
    """Check if debug mode is enabled."""
    return os.getenv("TRUSTCORE_DEBUG", "").lower() in ("1", "true", "yes")
