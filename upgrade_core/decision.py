"""
Fleet restart decision.

Containers are walked in listing order and each one's image status is folded
into a single FleetDecision. The fold is a policy object so the precedence
between `restart` and `blocked` can be changed in one place.
"""

from typing import Dict, List, Type

from upgrade_core.classifier import ImageUpdateClassifier
from upgrade_core.models import (
    RESOLVED_STATUSES,
    ContainerOutcome,
    ContainerRecord,
    FleetDecision,
    ImageStatus,
    Inventory,
    RunReport,
    Settings,
)
from upgrade_core.probers import manager_undeterminable, select_prober


class SequentialOverwritePolicy:
    """Last writer wins.

    A cached `updated` or `untagged` image sets `restart`, a cached
    `update-needed` image sets `blocked`, each overwriting whatever came
    before. A freshly classified `update-needed` image leaves the decision
    alone; `up-to-date` never changes it.
    """

    name = 'sequential'

    def apply(self, decision: FleetDecision, status: ImageStatus, cached: bool) -> FleetDecision:
        if status in (ImageStatus.UPDATED, ImageStatus.UNTAGGED):
            return FleetDecision.RESTART
        if status == ImageStatus.UPDATE_NEEDED and cached:
            return FleetDecision.BLOCKED
        return decision


class BlockedWinsPolicy(SequentialOverwritePolicy):
    """Any image left unpatched blocks the fleet, whatever order it is seen in."""

    name = 'blocked-wins'

    def apply(self, decision: FleetDecision, status: ImageStatus, cached: bool) -> FleetDecision:
        if decision == FleetDecision.BLOCKED or status == ImageStatus.UPDATE_NEEDED:
            return FleetDecision.BLOCKED
        return super().apply(decision, status, cached)


POLICIES: Dict[str, Type[SequentialOverwritePolicy]] = {
    SequentialOverwritePolicy.name: SequentialOverwritePolicy,
    BlockedWinsPolicy.name: BlockedWinsPolicy,
}


def build_policy(name: str):
    if name not in POLICIES:
        raise ValueError(f"Unknown decision policy: {name}")
    return POLICIES[name]()


_CACHED_OUTCOMES = {
    ImageStatus.UP_TO_DATE: ContainerOutcome.OK,
    ImageStatus.UPDATED: ContainerOutcome.RESTART_SCHEDULED,
    ImageStatus.UPDATE_NEEDED: ContainerOutcome.RESTART_BLOCKED,
    ImageStatus.UNTAGGED: ContainerOutcome.RESTART_SCHEDULED,
}


class RestartDecisionAggregator:
    def __init__(self, runtime, probers: List, policy, settings: Settings, logger):
        self.runtime = runtime
        self.probers = probers
        self.policy = policy
        self.settings = settings
        self.logger = logger

    def evaluate(self, inventory: Inventory, report: RunReport) -> FleetDecision:
        """Fold every container into one decision, recording per-container outcomes."""
        classifier = ImageUpdateClassifier(self.runtime, self.settings, self.logger, inventory.statuses)
        decision = FleetDecision.NO_RESTART
        for record in inventory.containers:
            status = inventory.statuses.get(record.image, ImageStatus.UNKNOWN)
            if status in RESOLVED_STATUSES:
                self._report_cached(record, status)
                outcome = _CACHED_OUTCOMES[status]
                decision = self.policy.apply(decision, status, cached=True)
            else:
                outcome, decision = self._probe(record, classifier, decision)
            report.outcomes[record.name] = outcome
        report.statuses = dict(inventory.statuses)
        report.decision = decision
        return decision

    def _probe(self, record: ContainerRecord, classifier: ImageUpdateClassifier, decision: FleetDecision):
        if manager_undeterminable(self.runtime, record.name):
            self.logger.warning(f"cannot check what package manager container: {record.name} is using")
            return ContainerOutcome.MANAGER_UNDETERMINED, decision

        prober = select_prober(self.probers, self.runtime, record.name)
        if prober is not None:
            status = classifier.classify(record, prober)
            decision = self.policy.apply(decision, status, cached=False)
            if status == ImageStatus.UPDATED:
                return ContainerOutcome.RESTART_SCHEDULED, decision
            if status == ImageStatus.UPDATE_NEEDED:
                return ContainerOutcome.RESTART_BLOCKED, decision
            return ContainerOutcome.OK, decision

        # Make sure it is still running before calling the image unsupported
        if record.name not in self.runtime.running_names():
            self.logger.warning(f"container: {record.name} has stopped since the scan started")
            return ContainerOutcome.STOPPED_SINCE_SCAN, decision

        self.logger.warning(f"container: {record.name} is using an unsupported image: {record.image}")
        classifier.statuses[record.image] = ImageStatus.UNSUPPORTED
        return ContainerOutcome.UNSUPPORTED_IMAGE, decision

    def _report_cached(self, record: ContainerRecord, status: ImageStatus) -> None:
        if status == ImageStatus.UP_TO_DATE:
            self.logger.info(f"no update needed for: {record.name}")
        elif status == ImageStatus.UPDATED:
            self.logger.info(
                f"a new updated image has already been downloaded for: {record.name} "
                f"- a container restart has been scheduled"
            )
        elif status == ImageStatus.UPDATE_NEEDED:
            self.logger.warning(
                f"no updated {record.image} is available for: {record.name} although updates are pending."
            )
        else:
            self.logger.info(
                f"container: {record.name} is not running on a currently tagged image "
                f"- a container restart has been scheduled"
            )
