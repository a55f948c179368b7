"""Kubernetes connection configuration models."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator


class ClusterConfig(BaseModel):
    """Configuration for a single Kubernetes cluster."""

    model_config = ConfigDict(extra="forbid")

    context: str = ""
    kubeconfig: str = "~/.kube/config"
    namespace: str = "default"
    timeout: int = 300

    @field_validator("timeout")
    @classmethod
    def validate_timeout(cls, v: int) -> int:
        """Validate timeout is positive."""
        if v <= 0:
            raise ValueError("timeout must be positive")
        return v

    @field_validator("kubeconfig")
    @classmethod
    def validate_kubeconfig(cls, v: str) -> str:
        """Expand ~ in kubeconfig path."""
        return str(Path(v).expanduser())


class KubernetesDefaultsConfig(BaseModel):
    """Default settings for Kubernetes API calls."""

    model_config = ConfigDict(extra="forbid")

    timeout: int = 300
    request_timeout: float = 30.0
    retry_attempts: int = 3

    @field_validator("timeout", "request_timeout")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        """Validate timeouts are positive."""
        if v <= 0:
            raise ValueError("timeout must be positive")
        return v

    @field_validator("retry_attempts")
    @classmethod
    def validate_retry_attempts(cls, v: int) -> int:
        """Validate retry_attempts is at least one."""
        if v < 1:
            raise ValueError("retry_attempts must be at least 1")
        return v


class KubernetesPluginConfig(BaseModel):
    """Cluster selection and API call defaults."""

    model_config = ConfigDict(extra="forbid")

    clusters: dict[str, ClusterConfig] = {}
    active_cluster: str | None = None
    defaults: KubernetesDefaultsConfig = KubernetesDefaultsConfig()

    @classmethod
    def from_env(cls, base_config: dict[str, Any] | None = None) -> KubernetesPluginConfig:
        """Create configuration with environment variable overrides.

        Environment variables take precedence over base_config values.

        Supported environment variables:
            ROPS_K8S_CONTEXT: Override active Kubernetes context
            ROPS_K8S_NAMESPACE: Override default namespace
            ROPS_K8S_KUBECONFIG: Override kubeconfig path
            ROPS_K8S_TIMEOUT: Default timeout in seconds
            ROPS_K8S_REQUEST_TIMEOUT: Per-request timeout in seconds
        """
        config_dict = dict(base_config) if base_config else {}
        config_dict["defaults"] = dict(config_dict.get("defaults") or {})
        config_dict.setdefault("clusters", {})

        if context := os.environ.get("ROPS_K8S_CONTEXT"):
            config_dict["active_cluster"] = context

        if timeout := os.environ.get("ROPS_K8S_TIMEOUT"):
            config_dict["defaults"]["timeout"] = int(timeout)

        if request_timeout := os.environ.get("ROPS_K8S_REQUEST_TIMEOUT"):
            config_dict["defaults"]["request_timeout"] = float(request_timeout)

        instance = cls.model_validate(config_dict)

        if kubeconfig := os.environ.get("ROPS_K8S_KUBECONFIG"):
            for cluster_cfg in instance.clusters.values():
                cluster_cfg.kubeconfig = str(Path(kubeconfig).expanduser())

        if namespace := os.environ.get("ROPS_K8S_NAMESPACE"):
            for cluster_cfg in instance.clusters.values():
                cluster_cfg.namespace = namespace

        return instance

    def get_active_context(self) -> str | None:
        """Get the active cluster context name.

        Returns the active_cluster if set, or the context from the first
        configured cluster, or None if no clusters are configured.
        """
        if self.active_cluster:
            if cluster := self.clusters.get(self.active_cluster):
                return cluster.context
            return self.active_cluster
        if self.clusters:
            first = next(iter(self.clusters.values()))
            return first.context
        return None

    def get_active_namespace(self) -> str:
        """Get the default namespace for the active cluster."""
        if self.active_cluster and self.active_cluster in self.clusters:
            return self.clusters[self.active_cluster].namespace
        if self.clusters:
            first = next(iter(self.clusters.values()))
            return first.namespace
        return "default"

    def get_active_timeout(self) -> int:
        """Get the timeout for the active cluster."""
        if self.active_cluster and self.active_cluster in self.clusters:
            return self.clusters[self.active_cluster].timeout
        return self.defaults.timeout
