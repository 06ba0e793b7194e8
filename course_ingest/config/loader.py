"""YAML queue configuration loader.

Queue definitions are layered (later layers override earlier):

  1. ``DEFAULT_QUEUES`` below -- built-in values for both queues
  2. ``config/queues.yaml`` -- checked-in or deploy-time overrides

The YAML file only needs the keys it changes::

    queues:
      embedding-generation:
        concurrency: 6
        rate_limit: {max_jobs: 40}
"""

from __future__ import annotations

import copy
from pathlib import Path

import yaml
from pydantic import ValidationError

from course_ingest.models.jobs import JobType, QueueConfig
from course_ingest.utils.errors import ConfigurationError

DOCUMENT_QUEUE = "document-processing"
EMBEDDING_QUEUE = "embedding-generation"

# Extraction is heavy and rate limited hard; embedding runs wider at lower priority.
DEFAULT_QUEUES: dict[str, dict] = {
    DOCUMENT_QUEUE: {
        "job_type": JobType.EXTRACTION.value,
        "concurrency": 2,
        "rate_limit": {"max_jobs": 5, "window_seconds": 60},
        "retry": {"attempts": 3, "backoff_base_seconds": 5.0},
        "default_priority": 1,
        "job_timeout_seconds": 300,
    },
    EMBEDDING_QUEUE: {
        "job_type": JobType.EMBEDDING.value,
        "concurrency": 3,
        "rate_limit": {"max_jobs": 20, "window_seconds": 60},
        "retry": {"attempts": 3, "backoff_base_seconds": 5.0},
        "default_priority": 3,
        "job_timeout_seconds": 300,
    },
}


def load_queue_configs(path: str | None = "config/queues.yaml") -> dict[str, QueueConfig]:
    """Build validated queue configs from the defaults and an optional YAML file.

    Args:
        path: YAML file to merge over the defaults.  A missing file (or
              ``None``) yields the defaults unchanged.

    Returns:
        Mapping of queue name to :class:`QueueConfig`.

    Raises:
        ConfigurationError: If the YAML is malformed or a queue fails validation.
    """
    # Deep copy so merging never mutates the module-level defaults.
    merged = copy.deepcopy(DEFAULT_QUEUES)

    if path and Path(path).exists():
        try:
            with open(path) as f:
                raw = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ConfigurationError(message=f"Invalid queue config {path}: {exc}") from exc
        _deep_merge(merged, raw.get("queues") or {})

    configs: dict[str, QueueConfig] = {}
    for name, values in merged.items():
        try:
            configs[name] = QueueConfig(name=name, **values)
        except ValidationError as exc:
            raise ConfigurationError(message=f"Invalid config for queue '{name}': {exc}") from exc
    return configs


def queue_for(configs: dict[str, QueueConfig], job_type: JobType) -> QueueConfig:
    """Return the config of the queue serving *job_type*."""
    for config in configs.values():
        if config.job_type == job_type:
            return config
    raise ConfigurationError(message=f"No queue configured for job type '{job_type.value}'")


def _deep_merge(base: dict, overrides: dict) -> None:
    """Recursively merge overrides into base dict, mutating base in place."""
    for key, value in overrides.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
