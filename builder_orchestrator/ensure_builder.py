"""
Ensure an organization has a healthy remote builder.

The orchestrator is a three-state machine:

- no recorded builder            -> create
- recorded builder, valid        -> return it
- recorded builder, invalid      -> delete it, then create a new one

There is no in-place repair: any defect is handled by full recreation. This is
the only place where internal signals become caller-visible errors; every
failure is raised as EnsureBuilderError tagged with its phase.
"""

import logging
from typing import Callable, Optional, Tuple

from .builder_state import BuilderApp, BuilderMachine, Organization
from .config import BuilderConfig
from .errors import BuildCancelled, EnsureBuilderError
from .fleet_client import FleetClient
from .logging_config import reset_current_org, set_current_org
from .names import generate_builder_name
from .provisioner import BuilderProvisioner
from .retry import CancelToken, RetryPolicy
from .tracing import get_tracer, record_error
from .validator import validate_builder

logger = logging.getLogger(__name__)


class BuilderOrchestrator:
    """Validates, decommissions and (re)creates builders."""

    def __init__(
        self,
        client: FleetClient,
        config: Optional[BuilderConfig] = None,
        read_policy: Optional[RetryPolicy] = None,
        volume_policy: Optional[RetryPolicy] = None,
        name_generator: Callable[[], str] = generate_builder_name,
    ):
        self.client = client
        self.config = config or BuilderConfig.defaults()
        self.read_policy = read_policy or RetryPolicy(
            attempts=self.config.read_attempts, interval_sec=self.config.retry_interval_sec
        )
        self.volume_policy = volume_policy or RetryPolicy(
            attempts=self.config.volume_create_attempts, interval_sec=self.config.retry_interval_sec
        )
        self.name_generator = name_generator
        self.provisioner = BuilderProvisioner(client, self.config, volume_policy=self.volume_policy)

    def ensure(
        self,
        org: Organization,
        region: str,
        cancel: Optional[CancelToken] = None,
    ) -> Tuple[BuilderMachine, BuilderApp]:
        """
        Return the organization's builder machine and app, creating them if needed.

        Raises:
            EnsureBuilderError: validation, decommission or creation failed
            BuildCancelled: cancel was triggered
        """
        token = set_current_org(org.slug)
        try:
            with get_tracer().start_as_current_span("ensure_builder") as span:
                span.set_attribute("builder.org", org.slug)
                span.set_attribute("builder.region", region)
                try:
                    return self._ensure(org, region, cancel, span)
                except EnsureBuilderError as e:
                    record_error(span, e.cause, f"{e.phase} builder failed")
                    raise
        finally:
            reset_current_org(token)

    def _ensure(self, org, region, cancel, span) -> Tuple[BuilderMachine, BuilderApp]:
        existing = org.remote_builder_app

        try:
            outcome = validate_builder(self.client, existing, self.read_policy, cancel)
        except BuildCancelled:
            raise
        except Exception as e:
            raise EnsureBuilderError("validate", e) from e

        if outcome.is_valid:
            span.add_event("builder app already exists and is valid")
            logger.info(f"[BUILDER] Reusing builder {existing.name} (machine {outcome.machine.id})")
            return outcome.machine, existing

        if outcome.requires_decommission:
            span.add_event(f"deleting existing invalid builder due to {outcome.reason.value}")
            logger.warning(f"[BUILDER] Deleting invalid builder {existing.name}: {outcome.reason.value}")
            try:
                if cancel is not None:
                    cancel.raise_if_cancelled(f"delete app {existing.name}")
                self.client.delete_app(existing.name)
            except BuildCancelled:
                raise
            except Exception as e:
                raise EnsureBuilderError("decommission", e) from e

        builder_name = self._fresh_name(existing)
        logger.info(f"[BUILDER] Creating builder {builder_name} in {region}")
        try:
            app, machine = self.provisioner.create(org, region, builder_name, cancel)
        except BuildCancelled:
            raise
        except Exception as e:
            raise EnsureBuilderError("create", e) from e

        return machine, app

    def _fresh_name(self, existing: Optional[BuilderApp]) -> str:
        name = self.name_generator()
        while existing is not None and name == existing.name:
            name = self.name_generator()
        return name


def ensure_builder(
    client: FleetClient,
    org: Organization,
    region: str,
    config: Optional[BuilderConfig] = None,
    cancel: Optional[CancelToken] = None,
) -> Tuple[BuilderMachine, BuilderApp]:
    """Ensure `org` has a usable builder in `region`; see BuilderOrchestrator.ensure."""
    return BuilderOrchestrator(client, config).ensure(org, region, cancel)
