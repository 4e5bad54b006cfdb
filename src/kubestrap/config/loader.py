# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubestrap/config/loader.py

import logging
import os
import re
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import ValidationError

from kubestrap.errors import InvalidConfiguration
from .models import KubestrapConfig

log = logging.getLogger("kubestrap")

SECRETS_ENV = "KUBESTRAP_SECRETS_FILE"
SECRETS_NAME = "secrets.yaml"
_UNRESOLVED = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


def merge_overrides(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """
    Fold `override` into `base` in place, recursing into nested mappings.
    None and "" in the override never replace a value.
    """
    for key, value in override.items():
        current = base.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merge_overrides(current, value)
        elif value is not None and value != "":
            base[key] = value
    return base


def secrets_path(config_path: Path) -> Optional[Path]:
    """$KUBESTRAP_SECRETS_FILE when set, otherwise secrets.yaml beside the config."""
    explicit = os.environ.get(SECRETS_ENV)
    if explicit:
        candidate = Path(explicit).expanduser()
        if candidate.is_file():
            return candidate
        log.warning("%s=%s does not exist, skipping", SECRETS_ENV, explicit)
        return None

    sibling = config_path.parent / SECRETS_NAME
    return sibling if sibling.is_file() else None


def read_yaml(path: Path) -> Dict[str, Any]:
    text = os.path.expandvars(path.read_text())
    missing = sorted(set(_UNRESOLVED.findall(text)))
    if missing:
        log.warning("%s: unset environment variable(s) left as-is: %s", path, ", ".join(missing))

    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise InvalidConfiguration(f"{path}: not valid YAML: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise InvalidConfiguration(f"{path}: top level must be a mapping")
    return data


def load_config(path: str | Path) -> KubestrapConfig:
    """
    ${ENV} references are expanded first, then secrets.yaml is merged over
    the config, then the result is validated.
    """
    path = Path(path).expanduser()
    if not path.is_file():
        raise FileNotFoundError(f"config file not found: {path}")

    data = read_yaml(path)
    extra = secrets_path(path)
    if extra is not None:
        log.debug("merging secrets from %s", extra)
        merge_overrides(data, read_yaml(extra))

    try:
        return KubestrapConfig.model_validate(data)
    except ValidationError as exc:
        raise InvalidConfiguration(f"{path}: {exc}") from exc
