"""
Package manager probers.

A prober knows how to tell whether a container uses its package manager and
how to ask that package manager for pending upgrades. Support for another
distro family is added by registering a new PackageProber subclass in
PROBERS; the decision engine only sees UpgradeCheck results.
"""

import re
from typing import Dict, List, Optional, Type

from upgrade_core.models import UpgradeCheck


UPGRADE_MARKER = 'Packages that will be upgraded'
_UPGRADE_LINE = re.compile(re.escape(UPGRADE_MARKER) + r':(.*)')
_UPDATE_FAILED = re.compile(r'[fF]ailed')

# Returned by old daemons when exec is not usable at all
_EXEC_BROKEN = 'invalid header field value'


def manager_undeterminable(runtime, container_name: str) -> bool:
    """True if commands cannot be run in the container to find its package manager."""
    result = runtime.exec(container_name, ['whereis', 'whereis'])
    if _EXEC_BROKEN in (result.output or '') or _EXEC_BROKEN in (result.error or ''):
        return True
    return result.error is not None and not result.container_gone


def parse_dry_run_output(output: str, exit_code: Optional[int] = 0) -> UpgradeCheck:
    """Turn `unattended-upgrade -v --dry` output into an UpgradeCheck."""
    match = _UPGRADE_LINE.search(output or '')
    if match:
        return UpgradeCheck.pending(match.group(1).split())
    if UPGRADE_MARKER in (output or ''):
        return UpgradeCheck.pending([])
    if exit_code not in (0, None):
        return UpgradeCheck.failed(f"unattended-upgrade dry run exited with {exit_code}")
    return UpgradeCheck.no_upgrades()


class PackageProber:
    """Capability interface: detect a package manager, check for upgrades."""

    name = 'base'

    def detect(self, runtime, container_name: str) -> bool:
        raise NotImplementedError

    def check_upgrades(self, runtime, container_name: str) -> UpgradeCheck:
        raise NotImplementedError


class AptProber(PackageProber):
    """Debian/Ubuntu images, checked with unattended-upgrades."""

    name = 'apt'

    def detect(self, runtime, container_name: str) -> bool:
        # whereis ships with both Debian and Fedora based images
        result = runtime.exec(container_name, ['whereis', 'apt-get'])
        if not result.ok:
            return False
        return result.output.strip() not in ('', 'apt-get:')

    def check_upgrades(self, runtime, container_name: str) -> UpgradeCheck:
        update = runtime.exec(container_name, ['apt-get', 'update'])
        if update.error is not None or _UPDATE_FAILED.search(update.output):
            return UpgradeCheck.failed(f"apt-get update failed in container: {container_name}")

        # Cheaper to look for the tool than to always try installing it
        which = runtime.exec(container_name, ['which', 'unattended-upgrades'])
        if not which.output.strip():
            runtime.exec(container_name, ['apt-get', 'install', '-y', 'unattended-upgrades'])

        dry_run = runtime.exec(container_name, ['unattended-upgrade', '-v', '--dry'])
        if dry_run.error is not None:
            return UpgradeCheck.failed(
                f"unattended-upgrade could not run in container: {container_name}: {dry_run.error}"
            )
        return parse_dry_run_output(dry_run.output, dry_run.exit_code)


PROBERS: Dict[str, Type[PackageProber]] = {
    'apt': AptProber,
}


def build_probers(names: List[str]) -> List[PackageProber]:
    probers = []
    for name in names:
        if name not in PROBERS:
            raise ValueError(f"Unknown package prober: {name}")
        probers.append(PROBERS[name]())
    return probers


def select_prober(probers: List[PackageProber], runtime, container_name: str) -> Optional[PackageProber]:
    for prober in probers:
        if prober.detect(runtime, container_name):
            return prober
    return None
