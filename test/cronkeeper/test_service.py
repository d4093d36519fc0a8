import asyncio

import pytest

from cronkeeper.access import DEPLOYER
from cronkeeper.errors import ActionNoLongerValid, InvalidParam, NotAuthorized
from cronkeeper.service import KeeperService


def test_rounds_run_job_then_refill(write_config):
    service = KeeperService.from_config_path(write_config())

    first = asyncio.run(service.run_round())
    assert first.tick == 1
    assert first.upkeep_needed is True
    assert first.outcome is not None and first.outcome.kind == "runJob"

    second = asyncio.run(service.run_round())
    assert second.outcome is not None and second.outcome.kind == "refundUpkeep"
    assert second.outcome.refill.amount_received == 200
    assert service.simulation.accounts.balance("1") == 250

    third = asyncio.run(service.run_round())
    assert third.upkeep_needed is False
    assert third.outcome is None
    assert service.last_report == third


def test_metrics_count_rounds(write_config):
    service = KeeperService.from_config_path(write_config())
    for _ in range(3):
        asyncio.run(service.run_round())

    text = service.metrics.render().decode()

    assert 'keeper_actions_total{kind="runJob"} 1.0' in text
    assert 'keeper_actions_total{kind="refundUpkeep"} 1.0' in text
    assert 'keeper_evaluations_total{outcome="idle"} 1.0' in text
    assert "keeper_refill_converted_total 1000.0" in text
    assert "keeper_operating_balance 250.0" in text


def test_upkeep_fee_is_charged_after_each_action(write_config):
    service = KeeperService.from_config_path(write_config({"simulation": {"upkeep_fee": 5}}))

    asyncio.run(service.run_round())

    assert service.simulation.accounts.balance("1") == 45


def test_failed_refill_is_reported_not_raised(write_config):
    service = KeeperService.from_config_path(write_config({"simulation": {"exchange_fee_bps": 500}}))
    asyncio.run(service.run_round())

    report = asyncio.run(service.run_round())

    assert report.upkeep_needed is True
    assert report.outcome is None
    assert report.error is not None and "minimum output 196" in report.error
    assert service.simulation.accounts.balance("1") == 50
    assert service.simulation.streams.unlocked_amount("1") == 10_000
    text = service.metrics.render().decode()
    assert 'keeper_rejections_total{reason="SwapBelowMinimum"} 1.0' in text


def test_stale_perform_is_rejected(write_config):
    service = KeeperService.from_config_path(write_config())
    needed, data = asyncio.run(service.check())
    assert needed is True

    asyncio.run(service.perform(data))
    with pytest.raises(ActionNoLongerValid):
        asyncio.run(service.perform(data))

    text = service.metrics.render().decode()
    assert 'keeper_rejections_total{reason="no_longer_valid"} 1.0' in text


def test_health_reports_degraded_buffer(write_config):
    service = KeeperService.from_config_path(write_config())

    status = asyncio.run(service.health())

    assert status["status"] == "degraded"
    assert status["network"] == "test"
    assert status["leader"] == "test"
    assert status["bufferSize"] == 250
    assert status["operatingBalance"] == 50
    assert status["jobs"] == [{"job": "job", "due": True, "reason": None}]

    for _ in range(2):
        asyncio.run(service.run_round())
    status = asyncio.run(service.health())
    assert status["status"] == "ok"
    assert status["jobs"][0]["reason"] == "Timer hasn't elapsed"


def test_reload_applies_new_settings(write_config):
    path = write_config()
    service = KeeperService.from_config_path(path)

    write_config(
        {
            "participants": [{"name": "test", "window": 2}, {"name": "other", "window": 100}],
            "treasury": {"threshold": 2000, "max_deposit": 50, "min_withdraw": 10, "slippage_tolerance_bps": 50},
        }
    )
    asyncio.run(service.reload())

    engine = service.simulation.refill_engine
    assert engine.state.threshold == 2000
    assert engine.state.max_deposit == 50
    assert engine.state.min_withdraw == 10
    assert engine.swap_parameters.tolerance_bps == 50
    assert service.simulation.sequencer.window_of("test") == 2
    assert service.simulation.sequencer.leader_at(2) == "other"
    assert service.config.treasury.threshold == 2000


def test_background_loop_runs_rounds(write_config):
    service = KeeperService.from_config_path(write_config({"interval_seconds": 0.01}))

    async def scenario() -> None:
        await service.start()
        await asyncio.sleep(0.2)
        await service.close()

    asyncio.run(scenario())

    assert service.last_report is not None
    assert service.simulation.clock() >= 1


class ExplodingJob:
    def is_due(self) -> bool:
        return True

    def execute(self, args: bytes) -> None:
        raise ValueError("job blew up")


def _with_exploding_job(service: KeeperService) -> None:
    jobs = service.simulation.jobs
    jobs.remove_job("job")
    jobs.add_job("boom", ExplodingJob())


def test_unexpected_job_error_is_reported_and_counted(write_config):
    service = KeeperService.from_config_path(write_config())
    _with_exploding_job(service)

    report = asyncio.run(service.run_round())

    assert report.upkeep_needed is True
    assert report.outcome is None
    assert report.error == "ValueError: job blew up"
    text = service.metrics.render().decode()
    assert 'keeper_round_failures_total{error="ValueError"} 1.0' in text


def test_evaluate_error_is_reported(write_config):
    service = KeeperService.from_config_path(write_config())
    asyncio.run(service.run_round())
    service.simulation.target_feed.precision = 18

    report = asyncio.run(service.run_round())

    assert report.upkeep_needed is False
    assert report.error is not None and "precision mismatch" in report.error
    text = service.metrics.render().decode()
    assert 'keeper_round_failures_total{error="PriceFeedMismatch"} 1.0' in text


def test_background_loop_survives_failing_rounds(write_config):
    service = KeeperService.from_config_path(write_config({"interval_seconds": 0.01}))
    _with_exploding_job(service)

    async def scenario() -> bool:
        await service.start()
        await asyncio.sleep(0.2)
        alive = not service._loop_task.done()
        await service.close()
        return alive

    assert asyncio.run(scenario()) is True
    assert service.simulation.clock() >= 2
    assert service.last_report.error == "ValueError: job blew up"


def test_reload_routes_owner_through_schedule(write_config):
    path = write_config()
    service = KeeperService.from_config_path(path)
    sequencer = service.simulation.sequencer

    assert sequencer.owner == DEPLOYER
    with pytest.raises(NotAuthorized):
        sequencer.set_window("test", 1000, caller="random-user")

    write_config({"participants": [{"name": "test", "window": 3}]})
    asyncio.run(service.reload())

    assert sequencer.window_of("test") == 3


def test_failed_reload_leaves_previous_settings(write_config):
    path = write_config()
    service = KeeperService.from_config_path(path)
    engine = service.simulation.refill_engine
    engine.transfer_ownership("treasury-multisig", caller=DEPLOYER)

    write_config(
        {
            "participants": [{"name": "test", "window": 4}, {"name": "other", "window": 100}],
            "treasury": {"threshold": 2000},
        }
    )
    with pytest.raises(NotAuthorized):
        asyncio.run(service.reload())

    sequencer = service.simulation.sequencer
    assert sequencer.slots() == [("test", 0, 1)]
    assert engine.state.threshold == 1000
    assert service.config.treasury.threshold == 1000


def test_reload_applies_surplus_routing_and_account(write_config):
    path = write_config()
    service = KeeperService.from_config_path(path)

    write_config({"treasury": {"route_surplus": True, "account_id": "2", "stream_id": "3"}})
    asyncio.run(service.reload())

    engine = service.simulation.refill_engine
    assert engine.account_id == "2"
    assert engine.stream_id == "3"
    assert engine.surplus_sink is service.simulation.surplus


def test_reload_warns_about_restart_only_changes(write_config, caplog):
    path = write_config()
    service = KeeperService.from_config_path(path)

    write_config({"jobs": [{"handle": "job", "max_duration": 50}], "owner": "someone-else"})
    asyncio.run(service.reload())

    messages = [record.getMessage() for record in caplog.records]
    assert "Configuration change to owner needs a restart; ignored on reload" in messages
    assert "Configuration change to jobs needs a restart; ignored on reload" in messages
    assert service.config.owner == DEPLOYER


def test_invalid_config_file_is_rejected_on_reload(write_config):
    path = write_config()
    service = KeeperService.from_config_path(path)

    write_config({"treasury": {"allow_idle_refill": "false"}})
    with pytest.raises(InvalidParam):
        asyncio.run(service.reload())

    assert service.simulation.refill_engine.allow_idle_refill is True
