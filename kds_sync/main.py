#!/usr/bin/env python3
"""
kds-sync - Entry Point

Tails the order controller's status log and keeps the display endpoint
up to date.

Usage:
    kds-sync                          # Start with default config lookup
    kds-sync --config my.yaml         # Use custom config file
    kds-sync --dry-run                # Validate, print config and exit
    kds-sync --verbose                # Enable debug logging
"""

import argparse
import asyncio
import sys

from kds_sync import __version__
from kds_sync.common.config import PipelineConfig
from kds_sync.common.exceptions import ConfigError
from kds_sync.common.logging_setup import get_service_logger, set_log_level
from kds_sync.services.pipeline.service import PipelineService, find_config_path, load_config

logger = get_service_logger("main")


def print_config_summary(config: PipelineConfig, config_path: str) -> None:
    """Print configuration summary."""
    print()
    print("=" * 60)
    print(f"  KDS-SYNC {__version__}")
    print("=" * 60)
    print(f"  Config:        {config_path}")
    print(f"  Status log:    {config.log.path} ({config.log.encoding})")
    print(f"  Poll interval: {config.log.poll_interval_ms} ms")
    print(f"  Ready TTL:     {config.ready_ttl_minutes:g} min")
    print(f"  Endpoint:      {config.endpoint.base_url}")
    print()
    print(f"  Devices ({len(config.devices)}):")
    for device in config.devices:
        destination = device.destination_path or "(not published)"
        print(f"    - {device.device_id:<12} {device.name:<20} -> {destination}")
    print()
    print(f"  Content mappings ({len(config.content.mappings)}, "
          f"every {config.content.sync_interval_s}s):")
    for mapping in config.content.mappings:
        print(f"    - {mapping.source_key} -> {mapping.destination_path}")
    if config.control.enabled:
        print()
        print(f"  Control API:   http://{config.control.host}:{config.control.port}/health")
    print("=" * 60)
    print()


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Status log tailing and snapshot publishing for kitchen displays"
    )
    parser.add_argument(
        "--config", "-c",
        type=str,
        default=None,
        help="Path to configuration file (default: first of /etc/kds-sync/config.yaml, "
             "/opt/kds-sync/config.yaml, ./config.yaml)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Validate and print configuration, then exit",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose (debug) logging",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"kds-sync {__version__}",
    )

    args = parser.parse_args()

    if args.verbose:
        set_log_level("DEBUG")

    config_path = args.config or find_config_path()

    try:
        config = load_config(config_path)
    except ConfigError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        sys.exit(1)

    print_config_summary(config, config_path)

    if args.dry_run:
        print("Dry run mode - exiting without starting pipeline")
        sys.exit(0)

    logger.info("Starting kds-sync...")

    try:
        asyncio.run(PipelineService(config).run())
    except KeyboardInterrupt:
        print("\nStopped by user")


if __name__ == "__main__":
    main()
