"""
Configuration Validator

Checks a raw configuration dict before it is turned into dataclasses.
"""

import codecs
from typing import Any

from kds_sync.common.logging_setup import get_service_logger

logger = get_service_logger("config.validator")

# Sanity bounds for intervals
MIN_POLL_INTERVAL_MS = 50
MIN_SYNC_INTERVAL_S = 1


class ConfigValidator:
    """Validates pipeline configuration"""

    def validate(self, config: dict[str, Any]) -> tuple[bool, list[str]]:
        """
        Validate configuration.

        Args:
            config: Configuration dictionary

        Returns:
            Tuple of (is_valid, list of error messages)
        """
        errors: list[str] = []

        sections = {}
        for name in ("log", "content", "endpoint", "control"):
            section = config.get(name) or {}
            if not isinstance(section, dict):
                errors.append(f"{name} must be a mapping")
                section = {}
            sections[name] = section

        devices = config.get("devices") or []
        if not isinstance(devices, list):
            errors.append("devices must be a list")
            devices = []

        errors.extend(self._validate_log(sections["log"]))
        errors.extend(self._validate_devices(devices))
        errors.extend(self._validate_content(sections["content"]))
        errors.extend(self._validate_endpoint(sections["endpoint"]))
        errors.extend(self._validate_timing(config))

        is_valid = len(errors) == 0

        if not is_valid:
            logger.warning(
                f"Config validation failed: {len(errors)} errors",
                extra={"errors": errors},
            )
        else:
            logger.debug("Config validation passed")

        return is_valid, errors

    def _validate_log(self, log: dict[str, Any]) -> list[str]:
        errors = []

        if not log.get("path"):
            errors.append("Missing log.path")

        poll_ms = log.get("poll_interval_ms", 1000)
        if not isinstance(poll_ms, (int, float)) or poll_ms < MIN_POLL_INTERVAL_MS:
            errors.append(f"log.poll_interval_ms must be >= {MIN_POLL_INTERVAL_MS}")

        encoding = log.get("encoding", "utf-16-le")
        if not isinstance(encoding, str):
            errors.append("log.encoding must be a string")
        else:
            try:
                codecs.lookup(encoding)
            except LookupError:
                errors.append(f"Unknown log.encoding: {encoding}")

        if not log.get("delimiter", ","):
            errors.append("log.delimiter cannot be empty")

        return errors

    def _validate_devices(self, devices: list[dict[str, Any]]) -> list[str]:
        errors = []

        if not devices:
            errors.append("No devices configured")
            return errors

        seen: set[str] = set()
        for i, device in enumerate(devices):
            if not isinstance(device, dict):
                errors.append(f"Device {i}: must be a mapping")
                continue
            device_id = device.get("device_id")
            if not device_id:
                errors.append(f"Device {i}: missing device_id")
                continue
            if device_id in seen:
                errors.append(f"Duplicate device_id: {device_id}")
            seen.add(device_id)

            destination = device.get("destination_path")
            if destination and not str(destination).startswith("/"):
                errors.append(f"Device {device_id}: destination_path must start with '/'")

        return errors

    def _validate_content(self, content: dict[str, Any]) -> list[str]:
        errors = []
        mappings = content.get("mappings") or []
        if not isinstance(mappings, list):
            errors.append("content.mappings must be a list")
            mappings = []

        if mappings and not content.get("source_dir"):
            errors.append("content.source_dir is required when mappings are configured")

        destinations: set[str] = set()
        for i, mapping in enumerate(mappings):
            if not isinstance(mapping, dict):
                errors.append(f"Content mapping {i}: must be a mapping")
                continue
            if not mapping.get("source_key"):
                errors.append(f"Content mapping {i}: missing source_key")
            destination = mapping.get("destination_path")
            if not destination:
                errors.append(f"Content mapping {i}: missing destination_path")
            elif destination in destinations:
                # Hashes are keyed by destination, so it must be unique
                errors.append(f"Duplicate content destination_path: {destination}")
            else:
                destinations.add(destination)

        sync_interval = content.get("sync_interval_s", 300)
        if not isinstance(sync_interval, (int, float)) or sync_interval < MIN_SYNC_INTERVAL_S:
            errors.append(f"content.sync_interval_s must be >= {MIN_SYNC_INTERVAL_S}")

        return errors

    def _validate_endpoint(self, endpoint: dict[str, Any]) -> list[str]:
        errors = []
        base_url = str(endpoint.get("base_url") or "")

        if not base_url:
            errors.append("Missing endpoint.base_url")
        elif not base_url.startswith(("http://", "https://")):
            errors.append("endpoint.base_url must start with http:// or https://")

        timeout = endpoint.get("timeout_s", 10.0)
        if not isinstance(timeout, (int, float)) or timeout <= 0:
            errors.append("endpoint.timeout_s must be positive")

        return errors

    def _validate_timing(self, config: dict[str, Any]) -> list[str]:
        errors = []

        ttl = config.get("ready_ttl_minutes", 5.0)
        if not isinstance(ttl, (int, float)) or ttl <= 0:
            errors.append("ready_ttl_minutes must be positive")

        expiry = config.get("expiry_interval_s", 60)
        if not isinstance(expiry, (int, float)) or expiry <= 0:
            errors.append("expiry_interval_s must be positive")

        stop_timeout = config.get("stop_timeout_s", 5.0)
        if not isinstance(stop_timeout, (int, float)) or stop_timeout < 0:
            errors.append("stop_timeout_s cannot be negative")

        return errors
