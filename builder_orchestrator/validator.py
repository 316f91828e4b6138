"""
Validation of an existing builder.

Volumes are checked before machines: a missing volume is the more common defect
and makes the machine listing pointless. Validation only reads.
"""

import logging
from typing import Optional

from .builder_state import BuilderApp, ValidationOutcome, ValidationReason
from .fleet_client import FleetClient
from .retry import READ_POLICY, CancelToken, RetryPolicy
from .tracing import get_tracer, record_error

logger = logging.getLogger(__name__)


def validate_builder(
    client: FleetClient,
    app: Optional[BuilderApp],
    read_policy: RetryPolicy = READ_POLICY,
    cancel: Optional[CancelToken] = None,
) -> ValidationOutcome:
    """
    Decide whether `app` still points at a usable builder.

    Returns an invalid outcome (never raises) for a builder that is absent or
    broken. Fleet API failures while listing resources do propagate.
    """
    with get_tracer().start_as_current_span("validate_builder") as span:
        if app is None:
            span.add_event("no builder app")
            return ValidationOutcome.invalid(ValidationReason.NO_BUILDER_APP)

        span.set_attribute("builder.app", app.name)

        try:
            volumes = read_policy.call(
                client.list_volumes, app.name,
                description=f"list volumes of {app.name}", cancel=cancel,
            )
        except Exception as e:
            record_error(span, e, "error getting volumes")
            raise

        if not volumes:
            logger.warning(f"[BUILDER_VALIDATE] Builder {app.name} has no volume")
            span.add_event("the existing builder app has no volume")
            return ValidationOutcome.invalid(ValidationReason.NO_BUILDER_VOLUME)

        try:
            machines = read_policy.call(
                client.list_machines, app.name,
                description=f"list machines of {app.name}", cancel=cancel,
            )
        except Exception as e:
            record_error(span, e, "error listing machines")
            raise

        active = [m for m in machines if m.is_active]
        if len(active) != 1:
            logger.warning(f"[BUILDER_VALIDATE] Builder {app.name} has {len(active)} active machines, expected 1")
            span.add_event(f"invalid machine count {len(active)}")
            return ValidationOutcome.invalid(ValidationReason.INVALID_MACHINE_COUNT)

        logger.debug(f"[BUILDER_VALIDATE] Builder {app.name} is valid (machine {active[0].id})")
        return ValidationOutcome.valid(active[0])
