"""
Builder state model for the builder orchestrator.

Provides the records the orchestrator reasons about:
- Organization / BuilderApp / BuilderVolume / BuilderMachine: fleet resources
- ValidationReason enum: why an existing builder is unusable
- ValidationOutcome: Valid(machine) or Invalid(reason), never an exception
- build_machine_spec(): pure function producing the launch request for a builder

Everything here is plain data; all remote I/O lives in the fleet client.
"""

from enum import Enum
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, List, TYPE_CHECKING

if TYPE_CHECKING:
    from .config import BuilderConfig


BUILDER_APP_ROLE = "remote-docker-builder"
BUILDER_VOLUME_NAME = "machine_data"
BUILDER_DATA_DIR = "/data"
BUILDER_INTERNAL_PORT = 8080

INACTIVE_MACHINE_STATES = ("destroyed", "destroying")


@dataclass(frozen=True)
class BuilderApp:
    """Registration record of a builder in the fleet."""
    id: str
    name: str
    organization_slug: str = ""
    status: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'BuilderApp':
        org = data.get('organization') or {}
        return cls(
            id=str(data.get('id', '')),
            name=data['name'],
            organization_slug=org.get('slug', ''),
            status=data.get('status', ''),
        )


@dataclass(frozen=True)
class Organization:
    """Tenant owning zero or one builder."""
    id: str
    slug: str
    remote_builder_app: Optional[BuilderApp] = None
    remote_builder_image: str = ""


@dataclass(frozen=True)
class BuilderVolume:
    """Persistent data volume mounted into the builder machine."""
    id: str
    name: str
    region: str = ""
    size_gb: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'BuilderVolume':
        return cls(
            id=data['id'],
            name=data.get('name', ''),
            region=data.get('region', ''),
            size_gb=int(data.get('size_gb') or 0),
        )


@dataclass(frozen=True)
class BuilderMachine:
    """Compute instance that runs the builds."""
    id: str
    name: str = ""
    state: str = ""
    region: str = ""
    image: str = ""

    @property
    def is_active(self) -> bool:
        return self.state not in INACTIVE_MACHINE_STATES

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'BuilderMachine':
        config = data.get('config') or {}
        return cls(
            id=data['id'],
            name=data.get('name', ''),
            state=data.get('state', ''),
            region=data.get('region', ''),
            image=config.get('image', ''),
        )


class ValidationReason(Enum):
    """Why an existing builder cannot be used."""

    NO_BUILDER_APP = "no builder app"                  # Nothing recorded yet (first run)
    NO_BUILDER_VOLUME = "no builder volume"            # App exists, volume is gone
    INVALID_MACHINE_COUNT = "invalid machine count"    # Zero or several active machines


@dataclass(frozen=True)
class ValidationOutcome:
    """
    Result of validating a builder: either a usable machine or a reason.

    Build instances through valid() / invalid(); exactly one of machine and
    reason is set.
    """

    machine: Optional[BuilderMachine] = None
    reason: Optional[ValidationReason] = None

    def __post_init__(self):
        if (self.machine is None) == (self.reason is None):
            raise ValueError("ValidationOutcome needs exactly one of machine or reason")

    @classmethod
    def valid(cls, machine: BuilderMachine) -> 'ValidationOutcome':
        return cls(machine=machine)

    @classmethod
    def invalid(cls, reason: ValidationReason) -> 'ValidationOutcome':
        return cls(reason=reason)

    @property
    def is_valid(self) -> bool:
        return self.machine is not None

    @property
    def requires_decommission(self) -> bool:
        """Something was recorded but is broken, so it must be deleted first."""
        return self.reason is not None and self.reason != ValidationReason.NO_BUILDER_APP


@dataclass(frozen=True)
class GuestSpec:
    """Compute class of the builder machine (also sizes its volume)."""
    cpu_kind: str = "shared"
    cpus: int = 4
    memory_mb: int = 4096

    def to_dict(self) -> Dict[str, Any]:
        return {"cpu_kind": self.cpu_kind, "cpus": self.cpus, "memory_mb": self.memory_mb}


@dataclass
class MachineLaunchSpec:
    """Launch request for a builder machine."""
    region: str
    image: str
    env: Dict[str, str]
    guest: GuestSpec
    mounts: List[Dict[str, Any]] = field(default_factory=list)
    services: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "region": self.region,
            "config": {
                "image": self.image,
                "env": dict(self.env),
                "guest": self.guest.to_dict(),
                "mounts": list(self.mounts),
                "services": list(self.services),
            },
        }


def build_machine_spec(
    org: Organization,
    app: BuilderApp,
    volume: BuilderVolume,
    region: str,
    config: 'BuilderConfig',
    guest: Optional[GuestSpec] = None,
) -> MachineLaunchSpec:
    """
    Launch request for the single builder machine of `app`.

    The machine stays warm (autostart on, autostop off) and serves the build
    protocol on 80 (redirected to HTTPS) and 443 (TLS, ALPN h2).
    """
    image = org.remote_builder_image or config.default_image

    return MachineLaunchSpec(
        region=region,
        image=image,
        env={
            "ALLOW_ORG_SLUG": org.slug,
            "DATA_DIR": BUILDER_DATA_DIR,
            "LOG_LEVEL": config.builder_log_level,
        },
        guest=guest or GuestSpec(),
        mounts=[{"path": BUILDER_DATA_DIR, "volume": volume.id, "name": app.name}],
        services=[
            {
                "protocol": "tcp",
                "internal_port": BUILDER_INTERNAL_PORT,
                "autostop": False,
                "autostart": True,
                "min_machines_running": 0,
                "ports": [
                    {
                        "port": 80,
                        "handlers": ["http"],
                        "force_https": True,
                        "http_options": {"h2_backend": True},
                    },
                    {
                        "port": 443,
                        "handlers": ["http", "tls"],
                        "tls_options": {"alpn": ["h2"]},
                        "http_options": {"h2_backend": True},
                    },
                ],
            }
        ],
    )
