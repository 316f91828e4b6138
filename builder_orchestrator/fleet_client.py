"""
Fleet API client.

FleetClient is the contract the orchestrator needs from the fleet-management API.
HttpFleetClient implements it over a Machines-style REST API with httpx.

Every method raises FleetApiError on failure. The status code is kept so that
is_transient() can decide whether a retry makes sense; transport errors carry no
status and are therefore never retried.
"""

import logging
import time
from typing import Any, Callable, Dict, List, Optional, Protocol, TypeVar

import httpx

from .builder_state import BuilderApp, BuilderMachine, BuilderVolume, GuestSpec, MachineLaunchSpec
from .config import BuilderConfig
from .errors import BuildCancelled, FleetApiError
from .retry import CancelToken

logger = logging.getLogger(__name__)

T = TypeVar("T")


class FleetClient(Protocol):
    """Operations the builder orchestrator performs against the fleet."""

    def create_app(self, org_id: str, name: str, role: str, machines: bool, preferred_region: str) -> BuilderApp: ...

    def delete_app(self, name: str) -> None: ...

    def allocate_ip_address(self, app_name: str, kind: str, region: str, org_slug: str) -> None: ...

    def wait_for_app(self, app_name: str, cancel: Optional[CancelToken] = None) -> None: ...

    def list_volumes(self, app_name: str) -> List[BuilderVolume]: ...

    def create_volume(
        self,
        app_name: str,
        name: str,
        size_gb: int,
        auto_backup_enabled: bool,
        compute: GuestSpec,
        region: str,
    ) -> BuilderVolume: ...

    def delete_volume(self, app_name: str, volume_id: str) -> None: ...

    def list_machines(self, app_name: str) -> List[BuilderMachine]: ...

    def launch_machine(self, app_name: str, spec: MachineLaunchSpec) -> BuilderMachine: ...


class HttpFleetClient:
    """FleetClient over HTTP."""

    def __init__(
        self,
        base_url: str,
        token: str,
        timeout: float = 30.0,
        app_ready_timeout_sec: float = 60.0,
        poll_interval_sec: float = 0.5,
        http_client: Optional[httpx.Client] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.app_ready_timeout_sec = app_ready_timeout_sec
        self.poll_interval_sec = poll_interval_sec
        self._http = http_client or httpx.Client(
            base_url=self.base_url,
            headers={"Authorization": f"Bearer {token}"} if token else {},
            timeout=timeout,
        )

    @classmethod
    def from_config(cls, config: BuilderConfig) -> 'HttpFleetClient':
        return cls(
            base_url=config.api_base_url,
            token=config.api_token,
            timeout=config.api_timeout_sec,
            app_ready_timeout_sec=config.app_ready_timeout_sec,
        )

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> 'HttpFleetClient':
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # =========================================================================
    # Apps
    # =========================================================================

    def create_app(self, org_id: str, name: str, role: str, machines: bool, preferred_region: str) -> BuilderApp:
        data = self._request("POST", "/v1/apps", json={
            "app_name": name,
            "org_id": org_id,
            "app_role_id": role,
            "machines": machines,
            "preferred_region": preferred_region,
        })
        if not isinstance(data, dict):
            raise FleetApiError("POST /v1/apps: unexpected response")
        data.setdefault("name", name)
        return _decode("POST", "/v1/apps", data, BuilderApp.from_dict)

    def delete_app(self, name: str) -> None:
        try:
            self._request("DELETE", f"/v1/apps/{name}")
        except FleetApiError as e:
            if e.status_code != 404:
                raise
            logger.debug(f"App {name} already gone")

    def allocate_ip_address(self, app_name: str, kind: str, region: str, org_slug: str) -> None:
        self._request("POST", f"/v1/apps/{app_name}/ip_assignments", json={
            "type": kind,
            "region": region,
            "org_slug": org_slug,
        })

    def wait_for_app(self, app_name: str, cancel: Optional[CancelToken] = None) -> None:
        """Poll until the app is visible to the machines API, or time out.

        Raises BuildCancelled as soon as `cancel` fires, even mid-pause.
        """
        deadline = time.monotonic() + self.app_ready_timeout_sec
        while True:
            if cancel is not None:
                cancel.raise_if_cancelled(f"wait for app {app_name}")
            try:
                self._request("GET", f"/v1/apps/{app_name}")
                return
            except FleetApiError as e:
                if e.status_code != 404:
                    raise
            if time.monotonic() >= deadline:
                raise FleetApiError(f"app {app_name} not ready after {self.app_ready_timeout_sec:.0f}s")
            if cancel is None:
                time.sleep(self.poll_interval_sec)
            elif cancel.wait(self.poll_interval_sec):
                raise BuildCancelled(f"wait for app {app_name} cancelled")

    # =========================================================================
    # Volumes
    # =========================================================================

    def list_volumes(self, app_name: str) -> List[BuilderVolume]:
        path = f"/v1/apps/{app_name}/volumes"
        data = self._request("GET", path) or []
        return _decode("GET", path, data, lambda items: [BuilderVolume.from_dict(v) for v in items])

    def create_volume(
        self,
        app_name: str,
        name: str,
        size_gb: int,
        auto_backup_enabled: bool,
        compute: GuestSpec,
        region: str,
    ) -> BuilderVolume:
        path = f"/v1/apps/{app_name}/volumes"
        data = self._request("POST", path, json={
            "name": name,
            "size_gb": size_gb,
            "auto_backup_enabled": auto_backup_enabled,
            "compute": compute.to_dict(),
            "region": region,
        })
        return _decode("POST", path, data, BuilderVolume.from_dict)

    def delete_volume(self, app_name: str, volume_id: str) -> None:
        self._request("DELETE", f"/v1/apps/{app_name}/volumes/{volume_id}")

    # =========================================================================
    # Machines
    # =========================================================================

    def list_machines(self, app_name: str) -> List[BuilderMachine]:
        path = f"/v1/apps/{app_name}/machines"
        data = self._request("GET", path) or []
        return _decode("GET", path, data, lambda items: [BuilderMachine.from_dict(m) for m in items])

    def launch_machine(self, app_name: str, spec: MachineLaunchSpec) -> BuilderMachine:
        path = f"/v1/apps/{app_name}/machines"
        data = self._request("POST", path, json=spec.to_dict())
        return _decode("POST", path, data, BuilderMachine.from_dict)

    def _request(self, method: str, path: str, json: Optional[Dict[str, Any]] = None) -> Any:
        try:
            response = self._http.request(method, path, json=json)
        except httpx.HTTPError as e:
            raise FleetApiError(f"{method} {path}: {e}") from e

        if response.status_code >= 400:
            raise FleetApiError(f"{method} {path}: {_error_message(response)}", status_code=response.status_code)

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise FleetApiError(f"{method} {path}: invalid JSON response") from e


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    return response.text or response.reason_phrase


def _decode(method: str, path: str, data: Any, parse: Callable[[Any], T]) -> T:
    """Turn a missing or malformed payload into a FleetApiError."""
    if data is None:
        raise FleetApiError(f"{method} {path}: unexpected response")
    try:
        return parse(data)
    except (TypeError, KeyError, AttributeError, ValueError) as e:
        raise FleetApiError(f"{method} {path}: unexpected response") from e
