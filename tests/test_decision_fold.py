import pytest

from upgrade_core.decision import (
    BlockedWinsPolicy,
    RestartDecisionAggregator,
    SequentialOverwritePolicy,
    build_policy,
)
from upgrade_core.models import (
    ContainerOutcome,
    ContainerRecord,
    ExecResult,
    FleetDecision,
    ImageStatus,
    Inventory,
    RunReport,
    Settings,
    UpgradeCheck,
)

from fakes import FakeProber, FakeRuntime, make_logger


def make_inventory(containers, statuses):
    return Inventory(
        containers=[ContainerRecord(name, image) for name, image in containers],
        statuses=dict(statuses),
    )


def evaluate(inventory, runtime=None, prober=None, policy=None):
    runtime = runtime or FakeRuntime(running=[(c.name, c.image) for c in inventory.containers])
    prober = prober or FakeProber()
    report = RunReport()
    aggregator = RestartDecisionAggregator(
        runtime, [prober], policy or SequentialOverwritePolicy(), Settings(), make_logger()
    )
    return aggregator.evaluate(inventory, report), report


def test_last_cached_result_wins_update_needed_then_updated():
    inventory = make_inventory(
        [('a', 'base:1'), ('b', 'app:2')],
        {'base:1': ImageStatus.UPDATE_NEEDED, 'app:2': ImageStatus.UPDATED},
    )
    decision, report = evaluate(inventory)
    assert decision == FleetDecision.RESTART
    assert report.outcomes == {
        'a': ContainerOutcome.RESTART_BLOCKED,
        'b': ContainerOutcome.RESTART_SCHEDULED,
    }


def test_last_cached_result_wins_updated_then_update_needed():
    inventory = make_inventory(
        [('b', 'app:2'), ('a', 'base:1')],
        {'base:1': ImageStatus.UPDATE_NEEDED, 'app:2': ImageStatus.UPDATED},
    )
    decision, _ = evaluate(inventory)
    assert decision == FleetDecision.BLOCKED


@pytest.mark.parametrize('earlier, expected', [
    (ImageStatus.UPDATED, FleetDecision.RESTART),
    (ImageStatus.UPDATE_NEEDED, FleetDecision.BLOCKED),
    (ImageStatus.UNTAGGED, FleetDecision.RESTART),
])
def test_up_to_date_never_resets_decision(earlier, expected):
    inventory = make_inventory(
        [('a', 'first:1'), ('b', 'fine:1')],
        {'first:1': earlier, 'fine:1': ImageStatus.UP_TO_DATE},
    )
    decision, report = evaluate(inventory)
    assert decision == expected
    assert report.outcomes['b'] == ContainerOutcome.OK


def test_fresh_update_needed_only_blocks_through_a_sibling():
    prober = FakeProber(
        supported={'a', 'b'},
        checks={'a': UpgradeCheck.pending(['libssl'])},
        verify={'svc:1.0': UpgradeCheck.pending(['libssl'])},
    )
    alone = make_inventory([('a', 'svc:1.0')], {'svc:1.0': ImageStatus.UNKNOWN})
    decision, report = evaluate(alone, prober=prober)
    assert decision == FleetDecision.NO_RESTART
    assert report.outcomes['a'] == ContainerOutcome.RESTART_BLOCKED

    prober = FakeProber(
        supported={'a', 'b'},
        checks={'a': UpgradeCheck.pending(['libssl'])},
        verify={'svc:1.0': UpgradeCheck.pending(['libssl'])},
    )
    shared = make_inventory([('a', 'svc:1.0'), ('b', 'svc:1.0')], {'svc:1.0': ImageStatus.UNKNOWN})
    decision, _ = evaluate(shared, prober=prober)
    assert decision == FleetDecision.BLOCKED
    assert prober.checked.count('a') == 1
    assert 'b' not in prober.checked


def test_freshly_updated_image_schedules_restart():
    prober = FakeProber(
        supported={'web'},
        checks={'web': UpgradeCheck.pending(['libssl', 'curl'])},
        verify={'svc:1.0': UpgradeCheck.no_upgrades()},
    )
    inventory = make_inventory([('web', 'svc:1.0')], {'svc:1.0': ImageStatus.UNKNOWN})
    decision, report = evaluate(inventory, prober=prober)
    assert decision == FleetDecision.RESTART
    assert report.statuses['svc:1.0'] == ImageStatus.UPDATED
    assert report.outcomes['web'] == ContainerOutcome.RESTART_SCHEDULED


def test_untagged_container_schedules_restart():
    inventory = make_inventory([('old', 'abcdef123456')], {'abcdef123456': ImageStatus.UNTAGGED})
    decision, report = evaluate(inventory)
    assert decision == FleetDecision.RESTART
    assert report.outcomes['old'] == ContainerOutcome.RESTART_SCHEDULED


def test_skipped_containers_leave_decision_alone():
    def exec_handler(name, argv):
        if name == 'weird':
            return ExecResult(None, error='500 Server Error: exec failed')
        if name == 'gone':
            return ExecResult(None, error='409 Conflict', container_gone=True)
        return ExecResult(0, '')

    runtime = FakeRuntime(
        running=[('weird', 'w:1'), ('gone', 'g:1'), ('alpine', 'alpine:3'), ('fresh', 'f:1')],
        still_running=['weird', 'alpine', 'fresh'],
        exec_handler=exec_handler,
    )
    inventory = make_inventory(
        [('fresh', 'f:1'), ('weird', 'w:1'), ('gone', 'g:1'), ('alpine', 'alpine:3')],
        {'f:1': ImageStatus.UPDATED, 'w:1': ImageStatus.UNKNOWN,
         'g:1': ImageStatus.UNKNOWN, 'alpine:3': ImageStatus.UNKNOWN},
    )

    decision, report = evaluate(inventory, runtime=runtime, prober=FakeProber())

    assert decision == FleetDecision.RESTART
    assert report.outcomes == {
        'fresh': ContainerOutcome.RESTART_SCHEDULED,
        'weird': ContainerOutcome.MANAGER_UNDETERMINED,
        'gone': ContainerOutcome.STOPPED_SINCE_SCAN,
        'alpine': ContainerOutcome.UNSUPPORTED_IMAGE,
    }
    assert report.statuses['alpine:3'] == ImageStatus.UNSUPPORTED
    assert report.statuses['w:1'] == ImageStatus.UNKNOWN


def test_paused_container_is_manager_undetermined():
    runtime = FakeRuntime(
        running=[('paused', 'debian:12')],
        exec_handler=lambda name, argv: ExecResult(
            None, error='409 Client Error: Conflict ("Container 4f1c9a is paused, unpause the container before exec")',
        ),
    )
    inventory = make_inventory([('paused', 'debian:12')], {'debian:12': ImageStatus.UNKNOWN})

    decision, report = evaluate(inventory, runtime=runtime, prober=FakeProber(supported={'paused'}))

    assert decision == FleetDecision.NO_RESTART
    assert report.outcomes == {'paused': ContainerOutcome.MANAGER_UNDETERMINED}
    assert report.statuses == {'debian:12': ImageStatus.UNKNOWN}


@pytest.mark.parametrize('order', [
    [('a', 'base:1'), ('b', 'app:2')],
    [('b', 'app:2'), ('a', 'base:1')],
])
def test_blocked_wins_policy_is_order_independent(order):
    inventory = make_inventory(
        order, {'base:1': ImageStatus.UPDATE_NEEDED, 'app:2': ImageStatus.UPDATED}
    )
    decision, _ = evaluate(inventory, policy=BlockedWinsPolicy())
    assert decision == FleetDecision.BLOCKED


def test_build_policy():
    assert isinstance(build_policy('sequential'), SequentialOverwritePolicy)
    assert isinstance(build_policy('blocked-wins'), BlockedWinsPolicy)
    with pytest.raises(ValueError):
        build_policy('worst-case')
