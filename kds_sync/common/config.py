"""
Configuration Dataclasses

Type-safe configuration structures for the sync pipeline.
Configuration is owned by the host (a YAML file for the standalone
service) and is read-only to the pipeline.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from kds_sync.common.exceptions import ConfigError


@dataclass
class TailSettings:
    """Status log tailing settings"""
    path: str = ""
    poll_interval_ms: int = 1000
    encoding: str = "utf-16-le"  # fixed by the producing system
    delimiter: str = ","


@dataclass
class DeviceMapping:
    """A tracked device and where its snapshots are published"""
    device_id: str
    name: str
    destination_path: str = ""  # empty = not mapped, publish skipped


@dataclass
class ContentMapping:
    """One source content key delivered to one destination path"""
    source_key: str
    destination_path: str


@dataclass
class ContentSettings:
    """Content distribution settings"""
    source_dir: str = ""
    sync_interval_s: int = 300
    mappings: list[ContentMapping] = field(default_factory=list)


@dataclass
class EndpointSettings:
    """External HTTP endpoint"""
    base_url: str = ""
    api_key: str = ""
    api_key_header: str = "X-API-Key"
    timeout_s: float = 10.0

    def auth_headers(self) -> dict[str, str]:
        if not self.api_key:
            return {}
        return {self.api_key_header: self.api_key}


@dataclass
class ControlSettings:
    """Local control server"""
    enabled: bool = True
    host: str = "127.0.0.1"
    port: int = 8090


@dataclass
class PipelineConfig:
    """Complete pipeline configuration"""
    log: TailSettings = field(default_factory=TailSettings)
    ready_ttl_minutes: float = 5.0
    expiry_interval_s: int = 60
    stop_timeout_s: float = 5.0
    devices: list[DeviceMapping] = field(default_factory=list)
    content: ContentSettings = field(default_factory=ContentSettings)
    endpoint: EndpointSettings = field(default_factory=EndpointSettings)
    control: ControlSettings = field(default_factory=ControlSettings)

    @property
    def poll_interval_s(self) -> float:
        return self.log.poll_interval_ms / 1000.0

    def get_mapped_devices(self) -> list[DeviceMapping]:
        """Devices that have a publish destination"""
        return [d for d in self.devices if d.destination_path]


# Environment variables that override file values
ENV_OVERRIDES = {
    "KDS_SYNC_API_KEY": ("endpoint", "api_key"),
    "KDS_SYNC_BASE_URL": ("endpoint", "base_url"),
    "KDS_SYNC_LOG_PATH": ("log", "path"),
}


def load_pipeline_config(data: dict) -> PipelineConfig:
    """Load PipelineConfig from dictionary (e.g., from a YAML file)"""
    log_data = data.get("log") or {}
    log_settings = TailSettings(
        path=str(log_data.get("path", "")),
        poll_interval_ms=int(log_data.get("poll_interval_ms", 1000)),
        encoding=log_data.get("encoding", "utf-16-le"),
        delimiter=log_data.get("delimiter", ","),
    )

    devices = [
        DeviceMapping(
            device_id=str(d["device_id"]),
            name=d.get("name") or str(d["device_id"]),
            destination_path=d.get("destination_path") or "",
        )
        for d in data.get("devices") or []
    ]

    content_data = data.get("content") or {}
    content_settings = ContentSettings(
        source_dir=str(content_data.get("source_dir", "")),
        sync_interval_s=int(content_data.get("sync_interval_s", 300)),
        mappings=[
            ContentMapping(
                source_key=str(m["source_key"]),
                destination_path=str(m["destination_path"]),
            )
            for m in content_data.get("mappings") or []
        ],
    )

    endpoint_data = data.get("endpoint") or {}
    endpoint_settings = EndpointSettings(
        base_url=str(endpoint_data.get("base_url", "")).rstrip("/"),
        api_key=str(endpoint_data.get("api_key") or ""),
        api_key_header=endpoint_data.get("api_key_header", "X-API-Key"),
        timeout_s=float(endpoint_data.get("timeout_s", 10.0)),
    )

    control_data = data.get("control") or {}
    control_settings = ControlSettings(
        enabled=bool(control_data.get("enabled", True)),
        host=control_data.get("host", "127.0.0.1"),
        port=int(control_data.get("port", 8090)),
    )

    return PipelineConfig(
        log=log_settings,
        ready_ttl_minutes=float(data.get("ready_ttl_minutes", 5.0)),
        expiry_interval_s=int(data.get("expiry_interval_s", 60)),
        stop_timeout_s=float(data.get("stop_timeout_s", 5.0)),
        devices=devices,
        content=content_settings,
        endpoint=endpoint_settings,
        control=control_settings,
    )


def apply_env_overrides(data: dict, environ: dict[str, str] | None = None) -> dict:
    """Return a copy of `data` with KDS_SYNC_* environment overrides applied."""
    environ = os.environ if environ is None else environ
    result = {key: (dict(value) if isinstance(value, dict) else value) for key, value in data.items()}

    for env_name, (section, key) in ENV_OVERRIDES.items():
        value = environ.get(env_name)
        if value:
            if not result.get(section):
                result[section] = {}
            if isinstance(result[section], dict):
                result[section][key] = value

    return result


def read_config_file(path: str | Path) -> dict[str, Any]:
    """
    Read a YAML configuration file.

    Raises:
        ConfigError: If the file is missing or not valid YAML
    """
    path = Path(path)
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError:
        raise ConfigError(f"Configuration file not found: {path}", recoverable=False)
    except yaml.YAMLError as e:
        raise ConfigError(f"Error parsing {path}: {e}", recoverable=False)

    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a mapping at top level", recoverable=False)
    return data
