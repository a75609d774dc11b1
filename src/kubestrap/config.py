"""Installer configuration.

All paths and switches the installer needs live in one InstallerConfig value
built by load_config() at startup and handed to every component. Nothing
else reads the environment.

Precedence (highest to lowest): CLI flags, environment variables, config
file (~/.kubestrap/config.yaml), defaults.
"""

from __future__ import annotations

import os
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from .shared.network import detect_host_ip

DEFAULT_K8S_VERSION = "v1.30.0"
DEFAULT_BASE_DIR = Path("/var/lib/kubernetes")
DEFAULT_KUBELET_DIR = Path("/var/lib/kubelet")
DEFAULT_LOG_DIR = Path("/var/log/kubernetes")
DEFAULT_CNI_CONF_DIR = Path("/etc/cni/net.d")
DEFAULT_CNI_BIN_DIR = Path("/opt/cni/bin")
DEFAULT_CONTAINERD_CONFIG = Path("/etc/containerd/config.toml")
DEFAULT_CONTAINERD_STATE_DIR = Path("/run/containerd")
DEFAULT_CONTAINERD_ROOT_DIR = Path("/var/lib/containerd")
DEFAULT_SEARCH_PATH = "/usr/local/sbin:/usr/local/bin:/usr/sbin:/usr/bin:/sbin:/bin"

# Environment variable mappings
ENV_VARS = {
    "base_dir": "KUBESTRAP_BASE_DIR",
    "kubelet_dir": "KUBESTRAP_KUBELET_DIR",
    "log_dir": "KUBESTRAP_LOG_DIR",
    "host_ip": "KUBESTRAP_HOST_IP",
}


def _to_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def _default_kubeconfig() -> Path:
    return Path.home() / ".kube" / "config"


@dataclass
class InstallerConfig:
    """Installer configuration."""

    k8s_version: str = DEFAULT_K8S_VERSION
    base_dir: Path = DEFAULT_BASE_DIR
    kubelet_dir: Path = DEFAULT_KUBELET_DIR
    log_dir: Path = DEFAULT_LOG_DIR
    host_ip: str = ""
    cni_conf_dir: Path = DEFAULT_CNI_CONF_DIR
    cni_bin_dir: Path = DEFAULT_CNI_BIN_DIR
    containerd_config: Path = DEFAULT_CONTAINERD_CONFIG
    containerd_state_dir: Path = DEFAULT_CONTAINERD_STATE_DIR
    containerd_root_dir: Path = DEFAULT_CONTAINERD_ROOT_DIR
    kubeconfig: Path = field(default_factory=_default_kubeconfig)
    search_path: str = DEFAULT_SEARCH_PATH

    skip_download: bool = False
    skip_verify: bool = False
    skip_api_wait: bool = False
    continue_on_error: bool = False
    verbose: bool = False

    ca_validity_days: int = 3650
    leaf_validity_days: int = 365
    api_grace_seconds: float = 15.0

    # Track where each value came from
    _sources: dict[str, str] = field(default_factory=dict, repr=False)

    def get_source(self, key: str) -> str:
        """Get the source of a config value."""
        return self._sources.get(key, "default")

    @property
    def bin_dir(self) -> Path:
        return self.base_dir / "bin"

    @property
    def pki_dir(self) -> Path:
        return self.base_dir / "pki"

    @property
    def etcd_data_dir(self) -> Path:
        return self.base_dir / "etcd"

    @property
    def manifests_dir(self) -> Path:
        return self.base_dir / "manifests"

    @property
    def kubelet_pki_dir(self) -> Path:
        return self.kubelet_dir / "pki"

    @property
    def kubelet_kubeconfig(self) -> Path:
        return self.kubelet_dir / "kubeconfig"

    @property
    def kubelet_config(self) -> Path:
        return self.kubelet_dir / "config.yaml"

    @property
    def token_file(self) -> Path:
        return self.pki_dir / "token.csv"

    @property
    def containerd_socket(self) -> Path:
        return self.containerd_state_dir / "containerd.sock"

    def binary(self, name: str) -> Path:
        """Canonical path of a service executable."""
        return self.bin_dir / name

    def log_file(self, service: str) -> Path:
        """Canonical log file of a service daemon."""
        return self.log_dir / f"{service}.log"

    def to_dict(self) -> dict[str, Any]:
        """Public fields as plain values, for display."""
        result: dict[str, Any] = {}
        for f in fields(self):
            if f.name.startswith("_"):
                continue
            value = getattr(self, f.name)
            result[f.name] = str(value) if isinstance(value, Path) else value
        return result


_CONVERTERS: dict[str, Callable[[Any], Any]] = {
    "k8s_version": str,
    "base_dir": Path,
    "kubelet_dir": Path,
    "log_dir": Path,
    "host_ip": str,
    "cni_conf_dir": Path,
    "cni_bin_dir": Path,
    "containerd_config": Path,
    "containerd_state_dir": Path,
    "containerd_root_dir": Path,
    "kubeconfig": lambda v: Path(v).expanduser(),
    "search_path": str,
    "skip_download": _to_bool,
    "skip_verify": _to_bool,
    "skip_api_wait": _to_bool,
    "continue_on_error": _to_bool,
    "verbose": _to_bool,
    "ca_validity_days": int,
    "leaf_validity_days": int,
    "api_grace_seconds": float,
}


def get_config_path() -> Path:
    """Get the default config file path.

    Returns:
        Path to ~/.kubestrap/config.yaml
    """
    return Path.home() / ".kubestrap" / "config.yaml"


def load_config(
    config_path: str | Path | None = None,
    overrides: Mapping[str, Any] | None = None,
    environ: Mapping[str, str] | None = None,
) -> InstallerConfig:
    """Load installer configuration.

    Args:
        config_path: Explicit config file. Defaults to ~/.kubestrap/config.yaml;
            a missing default file is ignored, a missing explicit file is not.
        overrides: Values from CLI flags. None values are ignored.
        environ: Environment mapping (defaults to os.environ)

    Returns:
        InstallerConfig with values and sources

    Raises:
        FileNotFoundError: If an explicit config file does not exist
        ValueError: If the config file is malformed or names unknown keys
    """
    config = InstallerConfig()
    sources: dict[str, str] = {key: "default" for key in _CONVERTERS}
    environ = os.environ if environ is None else environ

    explicit = config_path is not None
    path = Path(config_path) if explicit else get_config_path()
    if explicit and not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    if path.exists():
        with open(path) as f:
            file_config = yaml.safe_load(f) or {}
        if not isinstance(file_config, dict):
            raise ValueError(f"Config file {path} must contain a mapping")
        unknown = sorted(set(file_config) - set(_CONVERTERS))
        if unknown:
            raise ValueError(f"Unknown config keys in {path}: {', '.join(unknown)}")
        for key, value in file_config.items():
            setattr(config, key, _CONVERTERS[key](value))
            sources[key] = "config file"

    for key, env_var in ENV_VARS.items():
        if environ.get(env_var):
            setattr(config, key, _CONVERTERS[key](environ[env_var]))
            sources[key] = "environment"

    for key, value in (overrides or {}).items():
        if value is None:
            continue
        if key not in _CONVERTERS:
            raise ValueError(f"Unknown config key: {key}")
        setattr(config, key, _CONVERTERS[key](value))
        sources[key] = "cli"

    if environ.get("PATH") and sources["search_path"] == "default":
        config.search_path = environ["PATH"]
        sources["search_path"] = "environment"

    if not config.host_ip:
        config.host_ip = detect_host_ip()
        sources["host_ip"] = "detected"

    config._sources = sources
    return config

