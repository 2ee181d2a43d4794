"""Config discovery, YAML parsing and ``PERMADEPLOY_*`` overrides."""

import os
import re
from collections.abc import Mapping
from pathlib import Path

import yaml
from pydantic import BaseModel, ValidationError

from .models import PermadeployConfig

PROJECT_CONFIG = Path("permadeploy.yaml")
USER_CONFIG = Path(".permadeploy") / "config.yaml"

# Environment variable -> (section, field); a None section is top level.
ENV_OVERRIDES: dict[str, tuple[str | None, str]] = {
    "PERMADEPLOY_INDEXER_URL": ("network", "indexer_url"),
    "PERMADEPLOY_CONTENT_URL": ("network", "content_url"),
    "PERMADEPLOY_SATS_PER_KB": ("publish", "sats_per_kb"),
    "PERMADEPLOY_DESTINATION": ("publish", "destination_address"),
    "PERMADEPLOY_APP_NAME": ("versioning", "app_name"),
    "PERMADEPLOY_ORIGIN": ("versioning", "origin"),
    "PERMADEPLOY_RECORD": ("record", "path"),
    "PERMADEPLOY_BUILDER": ("plugins", "builder"),
    "PERMADEPLOY_LOG_LEVEL": (None, "log_level"),
}

_ENV_REF = re.compile(r"\$\{(\w+)\}")

_SECTIONS = frozenset(
    name
    for name, field in PermadeployConfig.model_fields.items()
    if isinstance(field.annotation, type) and issubclass(field.annotation, BaseModel)
)


def load_config(
    cli_path: str | None = None, environ: Mapping[str, str] | None = None
) -> PermadeployConfig:
    """Load config with resolution order: CLI > project-local > user-global > defaults.

    ``PERMADEPLOY_*`` variables from :data:`ENV_OVERRIDES` are applied on
    top of whichever source won; empty values are ignored.
    """
    env = os.environ if environ is None else environ
    if cli_path and not Path(cli_path).exists():
        raise ValueError(f"Config file not found: {cli_path}")

    candidates = [Path(cli_path)] if cli_path else []
    candidates += [PROJECT_CONFIG, Path.home() / USER_CONFIG]

    source, raw = "defaults", {}
    for path in candidates:
        data = _read_yaml(path) if path.exists() else None
        if data is not None:
            source, raw = str(path), _expand_env_vars(_check_sections(data, path), env)
            break

    raw, applied = _apply_env_overrides(raw, env)
    if applied:
        source += f" with {', '.join(applied)}"
    try:
        return PermadeployConfig(**raw)
    except ValidationError as e:
        raise ValueError(f"Invalid config in {source}: {e}") from e


def _read_yaml(path: Path) -> dict | None:
    """Parsed mapping, or None for an empty file."""
    try:
        data = yaml.safe_load(path.read_text())
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in {path}: {e}") from e
    if data is not None and not isinstance(data, dict):
        raise ValueError(f"Invalid config in {path}: expected a mapping at top level")
    return data


def _check_sections(data: dict, path: Path) -> dict:
    """Reject unknown keys and non-mapping sections; drop sections left empty."""
    unknown = sorted(str(k) for k in data if k not in PermadeployConfig.model_fields)
    if unknown:
        raise ValueError(f"Invalid config in {path}: unknown key(s) {', '.join(unknown)}")

    checked = {}
    for key, value in data.items():
        if key in _SECTIONS:
            if value is None:
                continue
            if not isinstance(value, dict):
                raise ValueError(f"Invalid config in {path}: section '{key}' must be a mapping")
        checked[key] = value
    return checked


def _apply_env_overrides(
    raw: dict, environ: Mapping[str, str]
) -> tuple[dict, list[str]]:
    merged = {k: dict(v) if isinstance(v, dict) else v for k, v in raw.items()}
    applied = []
    for var, (section, key) in ENV_OVERRIDES.items():
        value = environ.get(var)
        if not value:
            continue
        target = merged if section is None else merged.setdefault(section, {})
        target[key] = value
        applied.append(var)
    return merged, applied


def _expand_env_vars(obj: object, environ: Mapping[str, str] | None = None) -> object:
    """Recursively expand ${VAR} references in strings; unset variables become empty."""
    env = os.environ if environ is None else environ
    if isinstance(obj, str):
        return _ENV_REF.sub(lambda m: env.get(m.group(1), ""), obj)
    if isinstance(obj, dict):
        return {k: _expand_env_vars(v, env) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_expand_env_vars(v, env) for v in obj]
    return obj


# Default YAML template for `permadeploy config init`
DEFAULT_CONFIG_TEMPLATE = """\
# permadeploy.yaml
#
# PERMADEPLOY_SATS_PER_KB, PERMADEPLOY_ORIGIN and the other PERMADEPLOY_*
# variables override single fields at load time.

# Indexer / content delivery
network:
  indexer_url: "https://ordinals.1sat.app"
  content_url: "https://ordfs.network"
  timeout: 30

# Publishing
publish:
  sats_per_kb: 1
  batch_size: 10               # broadcasts in flight per batch
  # destination_address: "${PERMADEPLOY_DESTINATION}"

# Large files
chunking:
  enabled: true
  threshold: 5242880           # 5 MiB
  chunk_size: 10485760         # 10 MiB nominal
  publish_helper: true

# Incremental redeploys
cache:
  enabled: true
  trust_legacy_chunks: true    # reuse old chunked records matched by size only

# Broadcast retries
retry:
  max_attempts: 5
  initial_delay: 2.0
  max_delay: 30.0
  multiplier: 2.0

# On-chain version history
versioning:
  enabled: true
  app_name: "permadeploy"
  # origin: "<txid>_<vout>"

# Local deployment record
record:
  path: "deployment-manifest.json"
  write_on_dry_run: false

# Plugins (entry point names)
# plugins:
#   builder: "my-signer"
#   rewriter: "my-rewriter"
#   indexer: "my-indexer"

# Logging
log_level: "info"              # debug | info | warn | error
log_format: "text"             # text | json
"""
