"""Device registration state machine.

States:
    UNREGISTERED -> REGISTERING -> REGISTERED
    REGISTERED -> UNREGISTERED on a deletion event

On first run the device registers itself with its stable identifier and
current push token. A token refresh always re-runs registration. A
periodic liveness check pings the server with token and device id; what
happens when the server rejects the ping is the ``on_ping_failure``
policy:

- "log": only log the mismatch, keep local state (default)
- "deregister": ask the server to delete the device record and mark the
  device unregistered locally
"""

from __future__ import annotations

import logging
import platform
import threading
from typing import TYPE_CHECKING

from deviceagent.agent.device import hashed_device_id
from deviceagent.agent.errors import TransportError
from deviceagent.agent.result import ApiError, NetworkError, NetworkResult, Success
from deviceagent.core.types import RegistrationState

if TYPE_CHECKING:
    from deviceagent.agent.api import AgentClient
    from deviceagent.agent.device import DeviceInfo
    from deviceagent.agent.store import RecordStore

logger = logging.getLogger(__name__)


def redact_token(token: str) -> str:
    """Shorten a push token for logging."""
    return f"{token[:15]}..."


class RegistrationManager:
    """Tracks and drives registration of this device with the server."""

    def __init__(
        self,
        store: RecordStore,
        client: AgentClient,
        device_info: DeviceInfo,
        on_ping_failure: str = "log",
        device_name: str | None = None,
    ) -> None:
        """Initialize the registration manager.

        Args:
            store: Record store persisting the DeviceRegistration.
            client: HTTP client for server communication.
            device_info: Source of hardware identity and model.
            on_ping_failure: Policy when the server rejects a liveness ping.
            device_name: Name sent at registration (None = "<system>-<model>").
        """
        self._store = store
        self._client = client
        self._device_info = device_info
        self._on_ping_failure = on_ping_failure
        self._device_name = device_name
        self._lock = threading.Lock()
        self._registering = False

    @property
    def state(self) -> RegistrationState:
        """Get the current registration state."""
        if self._registering:
            return RegistrationState.REGISTERING
        if self._store.registration().registered:
            return RegistrationState.REGISTERED
        return RegistrationState.UNREGISTERED

    @property
    def is_registered(self) -> bool:
        return self.state is RegistrationState.REGISTERED

    def device_id(self) -> str:
        """Get the stable device identifier.

        Uses the cached value if present; otherwise the platform hardware
        id, falling back to a hash of platform properties. The chosen value
        is cached so it survives later changes of the host.
        """
        registration = self._store.registration()
        if registration.device_id:
            return registration.device_id

        device_id = self._device_info.hardware_id() or hashed_device_id()
        registration.device_id = device_id
        self._store.save_registration(registration)
        logger.info("Derived device id %s", device_id)
        return device_id

    def default_name(self) -> str:
        return self._device_name or f"{platform.system()}-{self._device_info.model()}"

    def register(self, name: str | None = None) -> NetworkResult:
        """Register this device with its current push token.

        Returns:
            Result of the registration call.
        """
        device_id = self.device_id()
        with self._lock:
            registration = self._store.registration()
            token = registration.push_token
            if not token:
                logger.warning("Cannot register: no push token available yet.")
                registration.registered = False
                self._store.save_registration(registration)
                return NetworkError(reason="no push token available")

            self._registering = True
            try:
                result = self._client.register_device(
                    token=token,
                    model=self._device_info.model(),
                    device_id=device_id,
                    name=name or self.default_name(),
                )
            finally:
                self._registering = False

            registration = self._store.registration()
            registration.registered = isinstance(result, Success)
            self._store.save_registration(registration)

        if isinstance(result, Success):
            logger.info("Device registration successful.")
        else:
            logger.error("Device registration failed.")
        return result

    def ensure_registered(self) -> NetworkResult | None:
        """Auto-register on first run.

        Returns:
            Result of the registration call, or None if this is not the
            first run.
        """
        registration = self._store.registration()
        if registration.initialized:
            return None
        registration.initialized = True
        self._store.save_registration(registration)
        logger.info("First run: registering device.")
        return self.register()

    def on_new_token(self, token: str) -> NetworkResult:
        """Store a refreshed push token and re-register with it."""
        logger.info("A new push token was received: %s", redact_token(token))
        registration = self._store.registration()
        registration.push_token = token
        self._store.save_registration(registration)
        return self.register()

    def check_liveness(self) -> NetworkResult | None:
        """Ping the server to verify it still recognizes this device.

        Returns:
            Result of the ping, or None if the check was skipped.

        Raises:
            TransportError: If the ping could not reach the server.
        """
        registration = self._store.registration()
        if not registration.registered:
            logger.info("Token check skipped: device is not marked as registered.")
            return None
        if not registration.push_token:
            logger.warning("Push token missing. Cannot perform check.")
            return None

        result = self._client.ping_device(registration.push_token, self.device_id())
        if isinstance(result, NetworkError):
            raise TransportError("ping_device", result)
        if isinstance(result, ApiError):
            if self._on_ping_failure == "deregister":
                logger.warning("Server ping rejected (%d). De-registering device.", result.code)
                self.handle_deleted()
            else:
                logger.warning(
                    "Server ping rejected (%d). The server may no longer recognize this "
                    "token/device. No local action will be taken.",
                    result.code,
                )
        else:
            logger.info("Server ping successful, token and registration are valid.")
        return result

    def handle_deleted(self) -> None:
        """Ask the server to delete this device and clear local registration."""
        device_id = self.device_id()
        try:
            result = self._client.delete_device(device_id)
            logger.info("Device removal request sent to server: %s", isinstance(result, Success))
        finally:
            registration = self._store.registration()
            registration.registered = False
            self._store.save_registration(registration)
