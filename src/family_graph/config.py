from __future__ import annotations

import os
from dataclasses import dataclass, fields


def _i(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, default))
    except Exception:
        return default


def _b(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _s(name: str, default: str) -> str:
    return os.getenv(name, default)


_ENV_NAMES = {
    "cache_ttl_seconds": "FAMILY_GRAPH_CACHE_TTL",
    "cache_queue_size": "FAMILY_GRAPH_CACHE_QUEUE_SIZE",
    "default_generations": "FAMILY_GRAPH_DEFAULT_GENERATIONS",
    "default_tree_generations": "FAMILY_GRAPH_DEFAULT_TREE_GENERATIONS",
    "max_generations": "FAMILY_GRAPH_MAX_GENERATIONS",
    "default_search_limit": "FAMILY_GRAPH_SEARCH_LIMIT",
    "max_search_limit": "FAMILY_GRAPH_SEARCH_MAX_LIMIT",
    "allow_reparenting": "FAMILY_GRAPH_ALLOW_REPARENTING",
    "sqlite_path": "FAMILY_GRAPH_SQLITE_PATH",
    "log_level": "FAMILY_GRAPH_LOG_LEVEL",
}


@dataclass(frozen=True)
class EngineConfig:
    # Cache
    cache_ttl_seconds: int = 300
    cache_queue_size: int = 1000

    # Traversal depth policy
    default_generations: int = 5
    default_tree_generations: int = 3
    max_generations: int = 10

    # Search paging
    default_search_limit: int = 10
    max_search_limit: int = 100

    # A child may be linked to more than one union only when re-parenting is allowed
    allow_reparenting: bool = False

    # Storage
    sqlite_path: str = "./data/family_graph.db"

    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> EngineConfig:
        """Read every field from its ``FAMILY_GRAPH_*`` variable, falling back to the default."""
        values = {}
        for field in fields(cls):
            name = _ENV_NAMES[field.name]
            if isinstance(field.default, bool):
                values[field.name] = _b(name, field.default)
            elif isinstance(field.default, int):
                values[field.name] = _i(name, field.default)
            else:
                values[field.name] = _s(name, field.default)
        return cls(**values)


CONFIG = EngineConfig.from_env()
