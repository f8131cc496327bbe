import random
import re
from collections import Counter
from typing import Dict

from docker.errors import DockerException

from upgrade_core.models import (
    RESOLVED_STATUSES,
    ContainerRecord,
    ImageStatus,
    Inventory,
    Settings,
    UpgradeCheck,
)
from upgrade_core.severity_utils import AbortRun, Severity


# A bare id rather than repo:tag means the tag now points at a newer image
CONTENT_ADDRESS = re.compile(r'^[a-z0-9]+$')


def build_inventory(runtime, logger) -> Inventory:
    """Record every running container and seed the image status table."""
    inventory = Inventory()
    for name, image in runtime.list_running():
        if CONTENT_ADDRESS.match(image):
            original = runtime.inspect_config_image(name)
            if not original:
                raise AbortRun(
                    Severity.CRITICAL,
                    f"potential change in Docker API. Image for: {name} is unknown",
                )
            inventory.statuses[image] = ImageStatus.UNTAGGED
            inventory.containers.append(ContainerRecord(name=name, image=image, original_image=original))
            logger.warning(f"container: {name} is running on an old, untagged version of: {original}")
        else:
            inventory.statuses.setdefault(image, ImageStatus.UNKNOWN)
            inventory.containers.append(ContainerRecord(name=name, image=image))
    return inventory


def verify_patched_image(runtime, prober, image: str, settings: Settings, logger) -> UpgradeCheck:
    """Run the upgrade check inside a throwaway container of a freshly pulled image.

    The probe container is always killed and removed, whatever the check does.
    """
    probe_name = f"{settings.probe_name_prefix}{random.randint(0, 32767)}"
    try:
        try:
            runtime.start_probe(image, probe_name, settings.probe_entrypoint)
        except DockerException as e:
            raise AbortRun(Severity.UNKNOWN, f"could not start probe container for {image}: {e}")
        logger.debug(f"Started probe container {probe_name} from {image}")
        return prober.check_upgrades(runtime, probe_name)
    finally:
        runtime.remove_probe(probe_name)


class ImageUpdateClassifier:
    """Decides the patch status of each image, at most once per image reference."""

    def __init__(self, runtime, settings: Settings, logger, statuses: Dict[str, ImageStatus]):
        self.runtime = runtime
        self.settings = settings
        self.logger = logger
        self.statuses = statuses
        self.checks = Counter()

    def classify(self, record: ContainerRecord, prober) -> ImageStatus:
        image = record.image
        cached = self.statuses.get(image, ImageStatus.UNKNOWN)
        if cached in RESOLVED_STATUSES:
            return cached

        self.checks[image] += 1
        check = prober.check_upgrades(self.runtime, record.name)
        if check.kind == UpgradeCheck.FAILED:
            raise AbortRun(Severity.WARNING, f"Aborting: {check.reason}")

        if check.kind == UpgradeCheck.NO_UPGRADES:
            self.logger.info(f"no update needed for: {image}")
            self.statuses[image] = ImageStatus.UP_TO_DATE
            return ImageStatus.UP_TO_DATE

        if check.kind != UpgradeCheck.PENDING:
            raise AbortRun(Severity.UNKNOWN, f"unexpected upgrade check result for {record.name}: {check.kind}")

        # Never restart on top of an image that may not have arrived
        pull = self.runtime.pull_image(image)
        if not pull.ok:
            raise AbortRun(
                Severity.WARNING,
                f"Aborting: couldn't fetch the image: {image}. Error message: {pull.error}",
            )

        verified = verify_patched_image(self.runtime, prober, image, self.settings, self.logger)
        if verified.kind == UpgradeCheck.NO_UPGRADES:
            self.statuses[image] = ImageStatus.UPDATED
            self.logger.info(f"updated image downloaded: {image} - a container restart has been scheduled")
            return ImageStatus.UPDATED
        if verified.kind == UpgradeCheck.PENDING:
            self.statuses[image] = ImageStatus.UPDATE_NEEDED
            self.logger.warning(
                f"no updated {image} is available for: {record.name} although these updates "
                f"are available: {' '.join(check.packages)}"
            )
            return ImageStatus.UPDATE_NEEDED
        raise AbortRun(
            Severity.UNKNOWN,
            f"unexpected result while verifying {image}: {verified.reason or verified.kind}",
        )
