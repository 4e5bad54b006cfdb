# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubestrap/cluster/manager.py
from __future__ import annotations

import logging
import threading
from typing import Dict, List, Optional, Tuple, Union

from kubestrap.errors import InvalidConfiguration, ProviderNotRegistered
from kubestrap.utils.execution import ExecutionContext
from .interface import Provider
from .types import ClusterType, HealthStatus

log = logging.getLogger("kubestrap")


def as_cluster_type(value: Union[str, ClusterType]) -> ClusterType:
    try:
        return ClusterType(value)
    except ValueError:
        valid = ", ".join(t.value for t in ClusterType)
        raise InvalidConfiguration(f"unknown cluster type '{value}' (expected one of: {valid})") from None


class ClusterManager:
    """
    Maps a cluster type to the provider registered for it.

    Nothing is registered by default. Registering a type twice replaces
    the earlier provider.
    """

    def __init__(self):
        self._providers: Dict[ClusterType, Provider] = {}
        self._lock = threading.Lock()

    def register_provider(self, provider: Provider) -> None:
        with self._lock:
            if provider.type in self._providers:
                log.debug("[manager] replacing provider for %s", provider.type.value)
            self._providers[provider.type] = provider

    def get_provider(self, cluster_type: Union[str, ClusterType]) -> Tuple[Optional[Provider], bool]:
        try:
            key = ClusterType(cluster_type)
        except ValueError:
            return None, False
        with self._lock:
            provider = self._providers.get(key)
        return provider, provider is not None

    def require_provider(self, cluster_type: Union[str, ClusterType]) -> Provider:
        provider, found = self.get_provider(cluster_type)
        if not found:
            raise ProviderNotRegistered(str(getattr(cluster_type, "value", cluster_type)))
        return provider

    def list_providers(self) -> List[ClusterType]:
        with self._lock:
            return sorted(self._providers, key=lambda t: t.value)

    def health_check(
        self,
        cluster_type: Union[str, ClusterType],
        name: str,
        ctx: Optional[ExecutionContext] = None,
    ) -> HealthStatus:
        return self.require_provider(cluster_type).health(name, ctx)
