import time

from prometheus_client import CollectorRegistry, Gauge, write_to_textfile

from upgrade_core.models import ContainerOutcome, ImageStatus


def write_run_metrics(path: str, report, severity, logger) -> bool:
    """Write the run's results for the node_exporter textfile collector."""
    registry = CollectorRegistry()
    containers = Gauge(
        'docker_unattended_upgrade_containers',
        'Containers per outcome in the last run',
        ['outcome'],
        registry=registry,
    )
    images = Gauge(
        'docker_unattended_upgrade_images',
        'Images per update status in the last run',
        ['status'],
        registry=registry,
    )
    exit_code = Gauge(
        'docker_unattended_upgrade_exit_code',
        'Exit code of the last run (0 ok, 1 warning, 2 critical, 3 unknown)',
        registry=registry,
    )
    last_run = Gauge(
        'docker_unattended_upgrade_last_run_timestamp_seconds',
        'Unix time the last run finished',
        registry=registry,
    )

    for outcome in ContainerOutcome:
        containers.labels(outcome=outcome.value).set(
            sum(1 for o in report.outcomes.values() if o == outcome)
        )
    for status in ImageStatus:
        images.labels(status=status.value).set(
            sum(1 for s in report.statuses.values() if s == status)
        )
    exit_code.set(int(severity))
    last_run.set(time.time())

    try:
        write_to_textfile(path, registry)
        return True
    except OSError as e:
        logger.warning(f"Failed to write metrics to {path}: {e}")
        return False
