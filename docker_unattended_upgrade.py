#!/usr/bin/env python3
"""
Docker Unattended Upgrade
Checks the running containers for pending OS package upgrades, downloads new
images that are themselves checked for upgrades, and restarts the containers
only when a fully patched image is available. Meant to be run periodically
as a Nagios compatible check.
"""

import os
import sys
import logging
import argparse
import shutil
from typing import Optional

import docker
from docker.errors import DockerException
from dotenv import load_dotenv
from jsonschema import ValidationError

from upgrade_core.logging_utils import JSONFormatter, PrefixFormatter
from upgrade_core.models import FleetDecision, RunReport, Settings
from upgrade_core.severity_utils import (
    AbortRun,
    Severity,
    log_with_severity,
    severity_for_decision,
)
from upgrade_core import classifier as cl
from upgrade_core import config_utils as cu
from upgrade_core import decision as dc
from upgrade_core import docker_utils as du
from upgrade_core import metrics_utils as mu
from upgrade_core import notify_utils as nu
from upgrade_core import probers as pr
from upgrade_core import restart_utils as ru


ENV_FILE = '/etc/docker-unattended-upgrade/.env'
if os.path.exists(ENV_FILE):
    load_dotenv(ENV_FILE)


class UnattendedUpgrader:
    """Audits running containers and decides whether to restart them."""

    def __init__(self, restart_mode: str, restart_target: str, config_file: str = None):
        if config_file is None:
            config_file = os.getenv('CONFIG_FILE', cu.DEFAULT_CONFIG_FILE)
        self.config_file = config_file
        self.restart_mode = restart_mode
        self.restart_target = restart_target
        self.docker_client = None
        self.settings = Settings()
        self.report = RunReport()
        self.setup_logging()

    def setup_logging(self):
        """Configure logging for line-oriented monitoring output."""
        log_level = os.getenv('LOG_LEVEL', 'INFO').upper()
        handlers = [logging.StreamHandler(sys.stdout)]

        # File logging only when asked for; a check should not need a writable /var/log
        log_dir = os.getenv('LOG_DIR')
        if log_dir:
            try:
                os.makedirs(log_dir, exist_ok=True)
                handlers.append(logging.FileHandler(os.path.join(log_dir, 'docker_unattended_upgrade.log')))
            except OSError as e:
                print(f"Warning: cannot log to {log_dir}: {e}")

        fmt = PrefixFormatter()
        if os.getenv('LOG_FORMAT', 'plain').lower() == 'json':
            fmt = JSONFormatter()
        for h in handlers:
            h.setFormatter(fmt)
        logging.basicConfig(level=getattr(logging, log_level, logging.INFO), handlers=handlers, force=True)
        self.logger = logging.getLogger(__name__)

    def load_config(self):
        try:
            self.settings = cu.load_settings(self.config_file, self.logger)
            self.policy = dc.build_policy(self.settings.decision_policy)
            self.probers = pr.build_probers(self.settings.probers)
        except (OSError, ValueError, ValidationError) as e:
            message = getattr(e, 'message', None) or str(e)
            raise AbortRun(Severity.UNKNOWN, f"Invalid configuration file {self.config_file}: {message}")

    def docker_installed(self) -> bool:
        return du.docker_installed(shutil)

    def init_docker_client(self):
        """Connect to the daemon; an installed but unresponsive Docker is critical."""
        try:
            self.docker_client = docker.from_env()
            self.docker_client.ping()
        except DockerException as e:
            raise AbortRun(Severity.CRITICAL, f"Docker is not working correctly: {e}")
        self.logger.debug("Docker client initialized successfully")

    def run(self) -> Severity:
        # Not every host runs Docker, so its absence is not a failure
        if not self.docker_installed():
            self.logger.info("Docker is not installed")
            return Severity.OK

        self.load_config()
        self.init_docker_client()
        runtime = du.DockerRuntime(self.docker_client, self.logger)

        inventory = cl.build_inventory(runtime, self.logger)
        self.report.statuses = dict(inventory.statuses)
        if len(inventory.containers) > self.settings.rate_limit_threshold:
            self.logger.warning("with this many update checks from one IP you'll probably be rate limited ...")

        aggregator = dc.RestartDecisionAggregator(runtime, self.probers, self.policy, self.settings, self.logger)
        decision = aggregator.evaluate(inventory, self.report)
        severity = severity_for_decision(decision)

        if decision == FleetDecision.RESTART:
            self.restart_containers()
            self.logger.info("Container restart issued")
        elif decision == FleetDecision.NO_RESTART:
            self.logger.info("no update needed")
        elif decision == FleetDecision.BLOCKED:
            self.logger.warning("no updated image available although updates are pending")
        else:
            log_with_severity(self.logger, severity, f"unexpected fleet decision: {decision}")
        return severity

    def restart_containers(self) -> bool:
        ok, output = ru.restart_containers(
            self.restart_mode,
            self.restart_target,
            self.logger,
            timeout=self.settings.restart_timeout,
        )
        self.report.restart_output = output
        if output:
            for line in output.splitlines():
                self.logger.info(line)
        if not ok:
            self.logger.warning(f"restart via {self.restart_mode} did not succeed: {output}")
        nu.notify_event(self.settings.webhook_url, 'restart', {
            'mode': self.restart_mode,
            'target': self.restart_target,
            'ok': ok,
            'containers': sorted(self.report.outcomes),
        }, self.logger)
        return ok


def execute(upgrader: UnattendedUpgrader) -> int:
    """Run once and turn the result, or any abort, into an exit code."""
    try:
        severity = upgrader.run()
    except AbortRun as e:
        severity = e.severity
        log_with_severity(upgrader.logger, severity, e.message)
        nu.notify_event(upgrader.settings.webhook_url, 'abort', {
            'severity': severity.name.lower(),
            'message': e.message,
        }, upgrader.logger)
    except Exception as e:
        severity = Severity.UNKNOWN
        log_with_severity(upgrader.logger, severity, f"unexpected error: {e}")
        upgrader.logger.debug("Traceback", exc_info=True)

    upgrader.report.severity = severity
    if upgrader.settings.metrics_textfile:
        mu.write_run_metrics(upgrader.settings.metrics_textfile, upgrader.report, severity, upgrader.logger)
    return int(severity)


class _CheckArgumentParser(argparse.ArgumentParser):
    """Argument errors are an UNKNOWN check result, not exit 2 (CRITICAL)."""

    def error(self, message):
        self.print_usage(sys.stdout)
        print(f"Unknown: {message}")
        sys.exit(int(Severity.UNKNOWN))


def build_parser() -> argparse.ArgumentParser:
    parser = _CheckArgumentParser(
        description='Restart containers when fully patched images are available',
        epilog=(
            'examples: %(prog)s systemctl my-docker-job.service | '
            '%(prog)s service my-docker-job | '
            '%(prog)s compose /path/to/my-docker-job.yml'
        ),
    )
    parser.add_argument('restart_mode', choices=ru.RESTART_MODES, help='How to restart the containers')
    parser.add_argument('restart_target', help='Unit name, service name or compose file')
    parser.add_argument('--config', dest='config', help='Path to config.json')
    return parser


def main(argv: Optional[list] = None):
    """Main entry point."""
    args = build_parser().parse_args(argv)
    upgrader = UnattendedUpgrader(args.restart_mode, args.restart_target, config_file=args.config)
    sys.exit(execute(upgrader))


if __name__ == "__main__":
    main()
