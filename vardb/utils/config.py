"""
Engine configuration defaults and environment overrides
"""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from typing import Mapping, Optional

# PLINK --check-sex defaults
DEFAULT_FEMALE_THRESHOLD = 0.2
DEFAULT_MALE_THRESHOLD = 0.8
DEFAULT_AAF_THRESHOLD = 0.0

_TRUE_TOKENS = {'1', 'true', 'yes', 'on'}
_FALSE_TOKENS = {'0', 'false', 'no', 'off', ''}


def _env_int(env: Mapping[str, str], key: str, default: int, minimum: int) -> int:
    raw = env.get(key)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{key} must be an integer, got {raw!r}")
    if value < minimum:
        raise ValueError(f"{key} must be >= {minimum}, got {value}")
    return value


def _env_bool(env: Mapping[str, str], key: str, default: bool) -> bool:
    raw = env.get(key)
    if raw is None:
        return default
    token = raw.strip().lower()
    if token in _TRUE_TOKENS:
        return True
    if token in _FALSE_TOKENS:
        return False
    raise ValueError(f"{key} must be a boolean flag, got {raw!r}")


@dataclass(frozen=True)
class EngineConfig:
    """Defaults used by the query engine when a request leaves a parameter unset.

    Attributes:
        workers: Worker pool size for parallel shard execution (0 = all CPUs).
        shard_rows: Maximum number of variant rows per shard.
        batch_size: Maximum number of records per streamed batch.
        kinship_threshold: Default phi cutoff for kinship (None = all pairs).
        female_threshold: F-statistic above which a declared female is flagged.
        male_threshold: F-statistic below which a declared male is flagged.
        aaf_threshold: Sites with alt allele frequency below this are skipped
            in the chrX F-statistic.
        verbose: Print progress messages.
    """

    workers: int = 0
    shard_rows: int = 50_000
    batch_size: int = 1_000
    kinship_threshold: Optional[float] = None
    female_threshold: float = DEFAULT_FEMALE_THRESHOLD
    male_threshold: float = DEFAULT_MALE_THRESHOLD
    aaf_threshold: float = DEFAULT_AAF_THRESHOLD
    verbose: bool = False

    def __post_init__(self):
        if self.workers < 0:
            raise ValueError("workers must be >= 0")
        if self.shard_rows < 1:
            raise ValueError("shard_rows must be >= 1")
        if self.batch_size < 1:
            raise ValueError("batch_size must be >= 1")

    @property
    def effective_workers(self) -> int:
        """Worker count with 0 resolved to the CPU count."""
        if self.workers == 0:
            return os.cpu_count() or 1
        return self.workers

    def with_overrides(self, **overrides) -> "EngineConfig":
        """Return a copy with the non-None overrides applied."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **changes)

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "EngineConfig":
        """Build a config from ``VARDB_*`` environment variables."""
        env = os.environ if env is None else env
        base = cls()
        return cls(
            workers=_env_int(env, 'VARDB_WORKERS', base.workers, 0),
            shard_rows=_env_int(env, 'VARDB_SHARD_ROWS', base.shard_rows, 1),
            batch_size=_env_int(env, 'VARDB_BATCH_SIZE', base.batch_size, 1),
            verbose=_env_bool(env, 'VARDB_VERBOSE', base.verbose),
        )
