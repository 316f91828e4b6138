"""
Creation of a brand-new builder.

A builder is four remote resources created in order: app registration, shared
IP, volume, machine. Each step that creates something registers one
compensating action; if any later step fails, the registered actions run in
reverse order before the original error is re-raised.
"""

import logging
from typing import Callable, List, Optional, Tuple

from .builder_state import (
    BUILDER_APP_ROLE,
    BUILDER_VOLUME_NAME,
    BuilderApp,
    BuilderMachine,
    GuestSpec,
    Organization,
    build_machine_spec,
)
from .config import BuilderConfig
from .errors import FleetApiError
from .fleet_client import FleetClient
from .retry import VOLUME_CREATE_POLICY, CancelToken, RetryPolicy
from .tracing import get_tracer, record_error

logger = logging.getLogger(__name__)


class Compensations:
    """
    Ordered list of rollback actions.

    run() executes them newest first. Each action is attempted once; a failing
    action is logged and recorded in `failures`, and the rest still run.
    """

    def __init__(self):
        self._actions: List[Tuple[str, Callable[[], None]]] = []
        self.failures: List[Tuple[str, Exception]] = []

    def register(self, description: str, action: Callable[[], None]) -> None:
        self._actions.append((description, action))

    @property
    def pending(self) -> List[str]:
        return [description for description, _ in self._actions]

    def __len__(self) -> int:
        return len(self._actions)

    def run(self) -> List[Tuple[str, Exception]]:
        while self._actions:
            description, action = self._actions.pop()
            logger.info(f"[BUILDER_ROLLBACK] {description}")
            try:
                action()
            except Exception as e:
                logger.error(f"[BUILDER_ROLLBACK] {description} failed: {e}")
                self.failures.append((description, e))
        return self.failures


class BuilderProvisioner:
    """Creates a builder end to end, rolling back on failure."""

    def __init__(
        self,
        client: FleetClient,
        config: BuilderConfig,
        volume_policy: RetryPolicy = VOLUME_CREATE_POLICY,
        guest: Optional[GuestSpec] = None,
    ):
        self.client = client
        self.config = config
        self.volume_policy = volume_policy
        self.guest = guest or GuestSpec()

    def create(
        self,
        org: Organization,
        region: str,
        builder_name: str,
        cancel: Optional[CancelToken] = None,
    ) -> Tuple[BuilderApp, BuilderMachine]:
        """
        Create app, IP, volume and machine for a new builder named `builder_name`.

        Either everything is created, or rollback has been attempted for every
        resource created so far and the original error is raised.
        """
        compensations = Compensations()

        with get_tracer().start_as_current_span("create_builder") as span:
            span.set_attribute("builder.app", builder_name)
            span.set_attribute("builder.region", region)
            try:
                return self._create(org, region, builder_name, cancel, compensations)
            except Exception as e:
                record_error(span, e, "error creating builder")
                if len(compensations):
                    span.add_event("cleaning up new builder due to error")
                    logger.warning(f"[BUILDER_CREATE] Creating {builder_name} failed ({e}), rolling back {len(compensations)} step(s)")
                    for description, failure in compensations.run():
                        span.add_event(f"rollback failed: {description}", {"error": str(failure)})
                raise

    def _create(
        self,
        org: Organization,
        region: str,
        builder_name: str,
        cancel: Optional[CancelToken],
        compensations: Compensations,
    ) -> Tuple[BuilderApp, BuilderMachine]:
        client = self.client

        _checkpoint(cancel, f"create app {builder_name}")
        logger.info(f"[BUILDER_CREATE] Creating builder app {builder_name} in {region} for {org.slug}")
        app = client.create_app(
            org_id=org.id,
            name=builder_name,
            role=BUILDER_APP_ROLE,
            machines=True,
            preferred_region=region,
        )
        compensations.register(f"delete app {app.name}", lambda: client.delete_app(app.name))

        _checkpoint(cancel, f"allocate ip for {app.name}")
        client.allocate_ip_address(app.name, "shared_v4", "", org.slug)

        _checkpoint(cancel, f"wait for {app.name}")
        try:
            client.wait_for_app(app.name, cancel=cancel)
        except FleetApiError as e:
            raise FleetApiError(f"waiting for app {app.name}: {e}", status_code=e.status_code) from e

        volume = self.volume_policy.call(
            client.create_volume,
            app.name,
            name=BUILDER_VOLUME_NAME,
            size_gb=self.config.volume_size_gb,
            auto_backup_enabled=False,
            compute=self.guest,
            region=region,
            description=f"create volume for {app.name}",
            cancel=cancel,
        )
        compensations.register(
            f"delete volume {volume.id}", lambda: client.delete_volume(app.name, volume.id)
        )
        logger.info(f"[BUILDER_CREATE] Created volume {volume.id} for {app.name}")

        _checkpoint(cancel, f"launch machine for {app.name}")
        spec = build_machine_spec(org, app, volume, region, self.config, guest=self.guest)
        machine = client.launch_machine(app.name, spec)

        logger.info(f"[BUILDER_CREATE] Builder {app.name} ready: machine {machine.id} ({spec.image})")
        return app, machine


def _checkpoint(cancel: Optional[CancelToken], description: str) -> None:
    if cancel is not None:
        cancel.raise_if_cancelled(description)
