# src/kubestrap/cluster/validate.py
from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from kubestrap.errors import InvalidConfiguration

CLUSTER_NAME_REQUIRED = "cluster name is required"
REGION_REQUIRED = "region is required"
PROJECT_REQUIRED = "GCP project is required"
NODE_GROUP_REQUIRED = "node group name is required"
NODE_POOL_REQUIRED = "node pool name is required"
DESIRED_COUNT_NEGATIVE = "desired count must be >= 0"


def require(value: Any, message: str) -> None:
    if value is None or (isinstance(value, str) and not value.strip()):
        raise InvalidConfiguration(message)


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
