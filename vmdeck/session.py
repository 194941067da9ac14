"""Session state shared by the UI and the headless commands."""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from vmdeck.config import (
    DEFAULT_DOUBLE_CLICK,
    DEFAULT_URI,
    MAX_MEMORY_MB,
    MAX_VCPUS,
    SCREENSHOT_DIR,
    SCRIPT_DIR,
)
from vmdeck.credentials import Credential, CredentialStore
from vmdeck.exceptions import NotConnectedError, OperationError, VMNotFoundError
from vmdeck.models import VM, Datastore, Host, PowerFilter, VMFilter
from vmdeck.services import EventLog, LibvirtService, RdpLauncher, start_event_loop
from vmdeck.settings import Settings
from vmdeck.tasks import TaskRunner

logger = logging.getLogger(__name__)


@dataclass
class Options:
    """Command line options that outlive argument parsing."""

    servers: list[str] = field(default_factory=list)
    username: str | None = None
    save_credential: bool = False
    power: PowerFilter = PowerFilter.ALL
    name_pattern: str = ""
    double_click: str = DEFAULT_DOUBLE_CLICK
    rdp_options: list[str] = field(default_factory=list)
    rdp_user: str | None = None
    perf: bool = False
    screenshot_dir: Path = SCREENSHOT_DIR
    script_dir: Path = SCRIPT_DIR
    max_vcpus: int = MAX_VCPUS
    max_memory_mb: int = MAX_MEMORY_MB


class Session:
    """Connections, caches and history for one run of the program."""

    def __init__(
        self,
        options: Options,
        settings: Settings | None = None,
        credential_store: CredentialStore | None = None,
        service_factory: Callable[[str, Credential | None], LibvirtService] = LibvirtService,
    ) -> None:
        self.options = options
        self.settings = settings if settings is not None else Settings.load()
        self.credential_store = credential_store or CredentialStore()
        self.service_factory = service_factory
        self.services: dict[str, LibvirtService] = {}
        self.credential: Credential | None = None
        self.datastores: dict[str, str] = {}
        self.events = EventLog()
        self.tasks = TaskRunner()
        self.vm_filter = VMFilter(power=options.power, name_pattern=options.name_pattern)
        self._vm_servers: dict[str, str] = {}
        self._rdp: RdpLauncher | None = None
        self._watch_events = False

    @property
    def servers(self) -> list[str]:
        """Servers from the command line, else the last-used list, else the default."""
        return self.options.servers or self.settings.servers or [DEFAULT_URI]

    def open(self, password: str | None = None, watch_events: bool = True) -> None:
        """Connect to every server; fails only if none can be reached."""
        self._watch_events = watch_events
        if watch_events:
            start_event_loop()

        credential = self._credential_for(password)
        self.credential = credential
        failures: list[NotConnectedError] = []
        for uri in self.servers:
            service = self.service_factory(uri, credential)
            try:
                service.connect()
            except NotConnectedError as e:
                logger.error("Could not connect to %s: %s", uri, e.cause or e)
                failures.append(e)
                continue
            self.services[uri] = service
            if watch_events:
                service.register_lifecycle_events(self.events.record)

        if not self.services:
            raise failures[0] if failures else NotConnectedError(", ".join(self.servers))

        self.settings.remember_servers(self.servers)
        try:
            self.save_settings()
        except OperationError as e:
            logger.warning("%s", e)
        self.refresh_datastores()

    def _credential_for(self, password: str | None) -> Credential | None:
        """The login for every server: typed now, else stored for this user and server set."""
        username = self.options.username
        if not username:
            return None
        if password is None:
            return self.credential_store.load(username, self.servers)
        credential = Credential(username, password)
        if self.options.save_credential:
            try:
                self.credential_store.save(self.servers, credential)
            except OSError as e:
                logger.warning("Could not save credential for %s: %s", username, e)
        return credential

    def close(self) -> None:
        if self._rdp is not None:
            self._rdp.cleanup()
        for service in self.services.values():
            service.disconnect()
        self.services.clear()

    def connection_states(self) -> dict[str, bool]:
        return {uri: service.is_connected for uri, service in self.services.items()}

    def reconnect(self, uri: str) -> None:
        service = self.services[uri]
        service.reconnect()
        if self._watch_events:
            service.register_lifecycle_events(self.events.record)

    def recover(self, error: NotConnectedError) -> bool:
        """Reconnect the server behind ``error`` once. True if it is back."""
        uri = error.uri
        logger.warning("Lost connection to %s: %s", uri, error.cause or error)
        if uri not in self.services:
            return False
        try:
            self.reconnect(uri)
        except NotConnectedError as e:
            logger.error("Reconnect to %s failed: %s", uri, e.cause or e)
            return False
        return True

    @property
    def rdp(self) -> RdpLauncher:
        if self._rdp is None:
            options = self.settings.rdp_options + self.options.rdp_options
            username = self.options.rdp_user or (self.credential.username if self.credential else None)
            self._rdp = RdpLauncher(options, username)
        return self._rdp

    def service_for(self, uuid: str) -> LibvirtService:
        """Find the server a VM lives on, asking the server every time."""
        known = self._vm_servers.get(uuid)
        if known in self.services and self.services[known].has_vm(uuid):
            return self.services[known]
        for uri, service in self.services.items():
            if uri != known and service.has_vm(uuid):
                self._vm_servers[uuid] = uri
                return service
        raise VMNotFoundError(uuid)

    def find_vm(self, uuid: str) -> VM:
        """Fresh VM row for ``uuid``."""
        return self.service_for(uuid).get_vm(uuid, include_stats=self.options.perf)

    def list_vms(self, vm_filter: VMFilter | None = None) -> list[VM]:
        vm_filter = vm_filter or self.vm_filter
        vms: list[VM] = []
        for uri, service in self.services.items():
            for vm in service.list_vms(include_stats=self.options.perf):
                self._vm_servers[vm.uuid] = uri
                if vm_filter.matches(vm):
                    vms.append(vm)
        return sorted(vms, key=lambda v: (v.name.lower(), v.server))

    def resolve_vm(self, ref: str) -> VM:
        """Look a VM up by UUID, or by exact name when unambiguous."""
        try:
            return self.find_vm(ref)
        except VMNotFoundError:
            pass
        matches = [vm for vm in self.list_vms(VMFilter()) if vm.name == ref]
        if len(matches) != 1:
            raise VMNotFoundError(ref)
        return matches[0]

    def refresh_datastores(self) -> list[Datastore]:
        datastores: list[Datastore] = []
        for service in self.services.values():
            datastores.extend(service.list_datastores())
        self.datastores = {d.uuid: d.name for d in datastores}
        return datastores

    def datastore_name(self, datastore_id: str) -> str:
        if datastore_id not in self.datastores:
            self.refresh_datastores()
        return self.datastores.get(datastore_id, datastore_id)

    def list_hosts(self) -> list[Host]:
        return [service.host_info() for service in self.services.values()]

    def remember_script(self, path: str, arguments: str = "") -> None:
        self.settings.remember_script(path, arguments)
        self.save_settings()

    def save_settings(self) -> None:
        try:
            self.settings.save()
        except OSError as e:
            raise OperationError("Save settings", f"{self.settings.path}: {e.strerror or e}", cause=e) from e
