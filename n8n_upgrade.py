#!/usr/bin/env python3
"""
n8n Upgrade
Upgrades the n8n service of a Docker Compose project with minimal downtime:
rewrites the image tag, prefetches the image, recreates only the n8n service
and reports the version running before and after.

Usage: n8n_upgrade.py [VERSION]   (defaults to "latest")
"""

import os
import sys
import time
import logging
import argparse
import dataclasses
import shutil
from datetime import datetime
from typing import Optional, Tuple

from updater_core import compose_scan as cs
from updater_core import compose_utils as cu
from updater_core import config_utils as cfg
from updater_core import docker_utils as du
from updater_core import notify_utils as nu
from updater_core.logging_utils import setup_logging
from updater_core.models import (
    DEFAULT_REPOSITORY,
    ServiceDescriptor,
    UpgradeContext,
    UpgradeError,
    UpgradeOutcome,
)
from updater_core.semver_utils import version_direction


class N8nUpgrader:
    """Runs the upgrade steps once, in order."""

    def __init__(self, settings: Optional[cfg.Settings] = None, desired_tag: str = 'latest',
                 project_dir: Optional[str] = None, docker_client=None):
        self.settings = settings or cfg.Settings()
        self.desired_tag = desired_tag or 'latest'
        self.project_dir = os.path.abspath(project_dir or os.getcwd())
        self.docker_client = docker_client
        self.logger = logging.getLogger(__name__)
        self.context: Optional[UpgradeContext] = None
        self.descriptor: Optional[ServiceDescriptor] = None
        self.started_at = datetime.now()

    def section(self, title: str):
        self.logger.info(f"=== {title} ===")

    def probe_environment(self) -> UpgradeContext:
        """Detect compose command, compose file and --wait support."""
        cu.require_command(shutil, 'docker')
        timeout = self.settings.compose_timeout
        compose_cmd = cu.get_compose_command(shutil, timeout)
        compose_file = cu.detect_compose_file(self.project_dir, self.logger)
        override_file = cu.detect_override_file(compose_file, self.logger)
        supports_wait = cu.supports_wait_flag(compose_cmd, self.project_dir, timeout)
        if self.docker_client is None:
            self.docker_client = du.init_docker_client(self.logger)
        self.context = UpgradeContext(
            compose_cmd=compose_cmd,
            compose_file=compose_file,
            override_file=override_file,
            project_dir=self.project_dir,
            desired_tag=self.desired_tag,
            supports_wait=supports_wait,
            compose_timeout=timeout,
            started_at=self.started_at,
        )
        return self.context

    def locate_service(self) -> ServiceDescriptor:
        compose_file = self.context.compose_file
        text = cu.read_compose_file(compose_file)
        name = cs.locate_service(text, source=os.path.basename(compose_file))
        self.descriptor = cs.describe_service(text, name)
        self.logger.info(f"Detected n8n service: {name}")
        return self.descriptor

    def inspect_version(self) -> Tuple[str, str]:
        """(container id, version); the id is '' when the service is not running."""
        container_id = cu.current_container_id(self.context, self.descriptor.name, self.logger)
        return container_id, du.container_version(self.docker_client, container_id, self.logger)

    def update_image_tag(self) -> Optional[str]:
        return cu.update_compose_file(self.context, self.descriptor, self.logger)

    def prefetch_image(self) -> str:
        repository = self.descriptor.repository or DEFAULT_REPOSITORY
        du.pull_image(self.docker_client, repository, self.desired_tag, self.logger)
        return f"{repository}:{self.desired_tag}"

    def apply_upgrade(self):
        """Recreate only the n8n service; with --wait support, recreate again and block until ready."""
        name = self.descriptor.name
        self.logger.info(f"Recreating service '{name}' with minimal downtime...")
        cu.recreate_service(self.context, name, self.logger)
        if self.context.supports_wait:
            cu.recreate_service_and_wait(self.context, name, self.logger)
        self.logger.info("Service recreation requested.")

    def report_outcome(self, before: str) -> UpgradeOutcome:
        # covers compose versions without --wait
        time.sleep(self.settings.grace_period)
        after_cid, after = self.inspect_version()

        self.section("Post-Upgrade")
        self.logger.info(f"Container: {after_cid or 'not running'}")
        self.logger.info(f"n8n version (after):  {after}")

        self.section("Done")
        outcome = UpgradeOutcome(before=before, after=after, changed=before != after,
                                 direction=version_direction(before, after))
        if not outcome.changed:
            compose = ' '.join(self.context.compose_cmd)
            self.logger.warning(
                "Version appears unchanged. Verify your compose image tag and logs: "
                f"{compose} logs -n 100 {self.descriptor.name}"
            )
        else:
            if outcome.direction == 'downgrade':
                self.logger.info(f"Version moved down from {before} to {after}.")
            self.logger.info("Upgrade complete.")
        return outcome

    def run(self) -> UpgradeOutcome:
        self.probe_environment()
        self.locate_service()

        self.section("Pre-flight")
        self.logger.info(f"Desired n8n version tag: {self.desired_tag}")
        self.logger.info(f"Compose command: {' '.join(self.context.compose_cmd)}")
        self.logger.info(f"Compose file: {os.path.basename(self.context.compose_file)}")

        before_cid, before = self.inspect_version()
        self.section("Current Version")
        self.logger.info(f"Container: {before_cid or 'not running'}")
        self.logger.info(f"n8n version (before): {before}")

        self.section("Prepare Image")
        self.update_image_tag()
        self.prefetch_image()

        self.section("Apply Upgrade")
        self.apply_upgrade()

        return self.report_outcome(before)

    def notify(self, event_type: str, **payload):
        if self.descriptor is not None:
            payload.setdefault('service', self.descriptor.name)
        payload.setdefault('desired_tag', self.desired_tag)
        return nu.notify_event(self.settings.webhook_url, event_type, payload, self.logger)


def main(argv=None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(description='Upgrade n8n (Docker Compose) with minimal downtime')
    parser.add_argument('version', nargs='?', default='latest', help='n8n image tag to deploy, e.g. 1.109.0 (default: latest)')
    parser.add_argument('--project-dir', dest='project_dir', help='Directory holding the compose file (default: current directory)')
    parser.add_argument('--grace-period', dest='grace_period', type=int,
                        help='Seconds to wait after recreating before checking the version (default: 3)')
    args = parser.parse_args(argv)

    cfg.load_env_file()
    settings = cfg.load_settings()
    if args.grace_period is not None:
        settings = dataclasses.replace(settings, grace_period=max(args.grace_period, 0))
    setup_logging(settings.log_level, settings.log_format, settings.log_file)

    upgrader = N8nUpgrader(settings, desired_tag=args.version, project_dir=args.project_dir)
    try:
        outcome = upgrader.run()
    except UpgradeError as e:
        upgrader.logger.error(str(e))
        upgrader.notify('upgrade_failed', error=str(e))
        return 1
    upgrader.notify('upgrade_completed', **dataclasses.asdict(outcome))
    return 0


if __name__ == "__main__":
    sys.exit(main())
