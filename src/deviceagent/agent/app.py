"""Agent assembly.

Builds the agent's object graph once at process start: record store,
HTTP client, registration, sync orchestrator, scanner, file transfer,
task queue and engine, dispatcher, periodic scheduler and push listener.
Every component receives its collaborators explicitly.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from deviceagent.agent.api import AgentClient
from deviceagent.agent.device import HostDeviceInfo, NoLocation, Permissions
from deviceagent.agent.dispatcher import CommandDispatcher
from deviceagent.agent.extraction import ExportDirExtractor
from deviceagent.agent.push import PushListener
from deviceagent.agent.registration import RegistrationManager
from deviceagent.agent.result import NetworkResult, Success
from deviceagent.agent.scanner import FilesystemScanner
from deviceagent.agent.store import RecordStore
from deviceagent.agent.sync import SyncOrchestrator
from deviceagent.agent.tasks.engine import TaskEngine
from deviceagent.agent.tasks.handlers import REGISTER, CommandHandlers
from deviceagent.agent.tasks.periodic import PeriodicScheduler
from deviceagent.agent.tasks.queue import TaskQueue
from deviceagent.agent.transfer import FileTransfer

if TYPE_CHECKING:
    import httpx

    from deviceagent.agent.device import DeviceInfo, LocationProvider
    from deviceagent.agent.extraction import Extractor
    from deviceagent.core.config import AgentConfig

logger = logging.getLogger(__name__)


class Agent:
    """The device agent: all components, wired together.

    Usage:
        with Agent(config) as agent:
            agent.start()
            ...
    """

    def __init__(
        self,
        config: AgentConfig,
        extractor: Extractor | None = None,
        device_info: DeviceInfo | None = None,
        location: LocationProvider | None = None,
        permissions: Permissions | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Build the agent.

        Args:
            config: Runtime configuration.
            extractor: Record source (default: exports in config.export_dir).
            device_info: Host identity and status (default: this host).
            location: Location source (default: none available).
            permissions: Granted capabilities (default: all).
            transport: Optional httpx transport (used by tests).
        """
        config.data_dir.mkdir(parents=True, exist_ok=True)
        self.config = config
        self.permissions = permissions or Permissions()
        self.device_info = device_info or HostDeviceInfo()
        self.location = location or NoLocation()

        self.store = RecordStore(config.store_path)
        self.client = AgentClient(config, transport=transport)
        self.registration = RegistrationManager(
            self.store,
            self.client,
            self.device_info,
            on_ping_failure=config.on_ping_failure,
            device_name=config.device_name,
        )
        self.device_id = self.registration.device_id()

        self.extractor = extractor or ExportDirExtractor(config.export_path, self.permissions)
        self.orchestrator = SyncOrchestrator(
            self.store, self.extractor, self.client, self.device_id
        )
        self.scanner = FilesystemScanner(
            config.scan_root,
            self.permissions,
            config.scan,
            exclude=(config.data_dir,),
        )
        self.transfer = FileTransfer(
            self.client, self.device_id, config.downloads_path, self.permissions
        )

        self.queue = TaskQueue(config.queue_path)
        self.handlers = CommandHandlers(
            client=self.client,
            device_id=self.device_id,
            permissions=self.permissions,
            orchestrator=self.orchestrator,
            scanner=self.scanner,
            transfer=self.transfer,
            registration=self.registration,
            device_info=self.device_info,
            location=self.location,
        )
        self.engine = TaskEngine(
            self.queue,
            self.handlers.as_mapping(),
            self.client,
            retry_policy=config.retry,
            worker_count=config.worker_count,
            network_check_interval=config.network_check_interval,
        )
        self.dispatcher = CommandDispatcher(self.engine)
        self.scheduler = PeriodicScheduler(
            self.engine,
            token_check_interval_hours=config.token_check_interval_hours,
            full_sync_interval_hours=config.full_sync_interval_hours,
        )
        self.push = PushListener(
            config.push_url(self.device_id),
            self.dispatcher,
            on_token=self.on_new_token,
            verify_ssl=config.verify_ssl,
        )

    def _register_later_if_failed(self, result: NetworkResult | None) -> None:
        if result is None or isinstance(result, Success):
            return
        if not self.store.registration().push_token:
            # Registration runs again when a token arrives
            return
        logger.info("Registration will be retried in the background.")
        self.engine.enqueue(REGISTER, unique_name=REGISTER)

    def on_new_token(self, token: str) -> None:
        """Re-register with a refreshed push token."""
        self._register_later_if_failed(self.registration.on_new_token(token))

    def start(self) -> None:
        """Register on first run, then start processing tasks and pushes."""
        self._register_later_if_failed(self.registration.ensure_registered())
        self.engine.start()
        self.scheduler.arm()
        self.push.start()
        logger.info("Device agent %s started", self.device_id)

    def stop(self) -> None:
        """Stop background activity; pending tasks stay queued."""
        self.push.stop()
        self.scheduler.stop()
        self.engine.stop()

    def close(self) -> None:
        """Stop and release the queue, the store and the HTTP client."""
        self.stop()
        self.queue.close()
        self.store.close()
        self.client.close()

    def __enter__(self) -> Agent:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()
