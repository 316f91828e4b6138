"""Unit tests for validate_builder()."""

import pytest

from builder_orchestrator.builder_state import BuilderMachine, ValidationOutcome, ValidationReason
from builder_orchestrator.errors import FleetApiError, RetriesExhaustedError
from builder_orchestrator.retry import RetryPolicy
from builder_orchestrator.validator import validate_builder

from fake_fleet import FakeFleetClient

FAST_READS = RetryPolicy.immediate(3)


class TestValidationOutcome:

    def test_exactly_one_of_machine_or_reason(self):
        with pytest.raises(ValueError):
            ValidationOutcome()
        with pytest.raises(ValueError):
            ValidationOutcome(machine=BuilderMachine(id="m1"), reason=ValidationReason.NO_BUILDER_APP)

    def test_decommission_only_when_something_existed(self):
        assert not ValidationOutcome.invalid(ValidationReason.NO_BUILDER_APP).requires_decommission
        assert ValidationOutcome.invalid(ValidationReason.NO_BUILDER_VOLUME).requires_decommission
        assert ValidationOutcome.invalid(ValidationReason.INVALID_MACHINE_COUNT).requires_decommission
        assert not ValidationOutcome.valid(BuilderMachine(id="m1")).requires_decommission


class TestValidateBuilder:

    def test_no_app_makes_no_calls(self):
        client = FakeFleetClient()

        outcome = validate_builder(client, None, FAST_READS)

        assert outcome.reason == ValidationReason.NO_BUILDER_APP
        assert client.calls == []

    def test_valid_builder_returns_its_machine(self):
        client = FakeFleetClient()
        app = client.add_builder("fly-builder-old")

        outcome = validate_builder(client, app, FAST_READS)

        assert outcome.is_valid
        assert outcome.machine == client.machines["fly-builder-old"][0]
        assert client.method_calls() == ["list_volumes", "list_machines"]

    def test_missing_volume_skips_machine_listing(self):
        client = FakeFleetClient()
        app = client.add_builder("fly-builder-old", volumes=0)

        outcome = validate_builder(client, app, FAST_READS)

        assert outcome.reason == ValidationReason.NO_BUILDER_VOLUME
        assert client.method_calls() == ["list_volumes"]

    @pytest.mark.parametrize("machines", [0, 2, 3])
    def test_machine_count_must_be_exactly_one(self, machines):
        client = FakeFleetClient()
        app = client.add_builder("fly-builder-old", machines=machines)

        outcome = validate_builder(client, app, FAST_READS)

        assert outcome.reason == ValidationReason.INVALID_MACHINE_COUNT

    def test_destroyed_machines_are_not_counted(self):
        client = FakeFleetClient()
        app = client.add_builder("fly-builder-old", machines=1)
        client.machines["fly-builder-old"].append(BuilderMachine(id="m_dead", state="destroyed"))

        outcome = validate_builder(client, app, FAST_READS)

        assert outcome.is_valid
        assert outcome.machine.id != "m_dead"

    def test_transient_read_errors_are_retried(self):
        client = FakeFleetClient()
        app = client.add_builder("fly-builder-old")
        client.fail_times("list_volumes", 2)
        client.fail_times("list_machines", 2)

        outcome = validate_builder(client, app, FAST_READS)

        assert outcome.is_valid
        assert len(client.calls_to("list_volumes")) == 3
        assert len(client.calls_to("list_machines")) == 3

    def test_read_budget_exhausted_raises(self):
        client = FakeFleetClient()
        app = client.add_builder("fly-builder-old")
        client.fail_times("list_machines", 3)

        with pytest.raises(RetriesExhaustedError):
            validate_builder(client, app, FAST_READS)

    def test_permanent_read_error_raises_immediately(self):
        client = FakeFleetClient()
        app = client.add_builder("fly-builder-old")
        client.fail("list_volumes", FleetApiError("unauthorized", status_code=401))

        with pytest.raises(FleetApiError) as exc_info:
            validate_builder(client, app, FAST_READS)

        assert exc_info.value.status_code == 401
        assert client.method_calls() == ["list_volumes"]
