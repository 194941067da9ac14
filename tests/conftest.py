"""
Pytest configuration and shared fixtures for vmdeck tests.

libvirt connections and domains are MagicMocks; nothing here talks to a
real hypervisor.
"""

from datetime import datetime
from pathlib import Path
from unittest.mock import MagicMock, patch

import libvirt
import pytest

from vmdeck.credentials import CredentialStore
from vmdeck.models import VM, Snapshot, VMState
from vmdeck.services.libvirt_service import LibvirtService
from vmdeck.session import Options, Session
from vmdeck.settings import Settings

URI = "qemu+ssh://root@hv1/system"
VM_UUID = "12345678-1234-1234-1234-123456789abc"
OTHER_UUID = "87654321-4321-4321-4321-cba987654321"

DOMAIN_XML = """
<domain type='kvm'>
  <name>web01</name>
  <uuid>12345678-1234-1234-1234-123456789abc</uuid>
  <devices>
    <disk type='file' device='disk'>
      <driver name='qemu' type='qcow2'/>
      <source file='/var/lib/libvirt/images/web01.qcow2'/>
      <target dev='vda' bus='virtio'/>
    </disk>
    <disk type='file' device='cdrom'>
      <driver name='qemu' type='raw'/>
      <source file='/srv/iso/debian.iso'/>
      <target dev='sda' bus='sata'/>
      <readonly/>
    </disk>
    <interface type='network'>
      <mac address='52:54:00:aa:bb:cc'/>
      <source network='default'/>
      <target dev='vnet0'/>
    </interface>
    <graphics type='spice' port='5900' autoport='yes'/>
  </devices>
</domain>
"""


def make_libvirt_error(code: int, domain: int = libvirt.VIR_FROM_NONE, message: str = "boom"):
    """Build a libvirtError carrying a structured error tuple."""
    error = libvirt.libvirtError(message)
    error.err = (code, domain, message, libvirt.VIR_ERR_ERROR, None, None, None, 0, 0)
    return error


# ============ libvirt Fixtures ============

@pytest.fixture
def make_domain():
    """Factory for mock libvirt domains."""
    def factory(
        uuid: str = VM_UUID,
        name: str = "web01",
        state: int = libvirt.VIR_DOMAIN_RUNNING,
        xml: str = DOMAIN_XML,
    ) -> MagicMock:
        domain = MagicMock()
        domain.UUIDString.return_value = uuid
        domain.name.return_value = name
        domain.state.return_value = (state, 0)
        domain.info.return_value = [state, 4194304, 4194304, 4, 123456789]
        domain.XMLDesc.return_value = xml
        domain.autostart.return_value = 1
        domain.isPersistent.return_value = 1
        domain.isActive.return_value = int(state == libvirt.VIR_DOMAIN_RUNNING)
        domain.snapshotNum.return_value = 0
        domain.hasCurrentSnapshot.return_value = 0
        return domain

    return factory


@pytest.fixture
def mock_domain(make_domain):
    return make_domain()


@pytest.fixture
def mock_conn(mock_domain):
    """Mock connection whose lookups search ``listAllDomains``."""
    conn = MagicMock()
    conn.listAllDomains.return_value = [mock_domain]
    conn.isAlive.return_value = 1

    def lookup(uuid):
        for domain in conn.listAllDomains.return_value:
            if domain.UUIDString() == uuid:
                return domain
        raise make_libvirt_error(libvirt.VIR_ERR_NO_DOMAIN)

    conn.lookupByUUIDString.side_effect = lookup
    return conn


@pytest.fixture
def service(mock_conn):
    """LibvirtService connected to ``mock_conn``."""
    with patch("libvirt.open", return_value=mock_conn):
        svc = LibvirtService(URI)
        svc.connect()
    return svc


# ============ Model Fixtures ============

@pytest.fixture
def make_vm():
    """Factory for VM rows."""
    def factory(
        uuid: str = VM_UUID,
        name: str = "web01",
        state: VMState = VMState.RUNNING,
        **kwargs,
    ) -> VM:
        kwargs.setdefault("vcpus", 2)
        kwargs.setdefault("memory_mb", 2048)
        return VM(uuid=uuid, name=name, server=URI, state=state, **kwargs)

    return factory


@pytest.fixture
def make_snapshot():
    """Factory for snapshot records."""
    def factory(snapshot_id: str, parent_id: str | None = None) -> Snapshot:
        return Snapshot(
            id=snapshot_id,
            name=snapshot_id,
            created_at=datetime(2024, 1, 1, 12, 0),
            parent_id=parent_id,
            state="running",
        )

    return factory


# ============ Session Fixtures ============

@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(path=tmp_path / "settings.json")


@pytest.fixture
def credential_store(tmp_path: Path) -> CredentialStore:
    return CredentialStore(tmp_path / "credentials")


@pytest.fixture
def fake_service(make_vm):
    """LibvirtService stand-in serving one running VM."""
    svc = MagicMock(spec=LibvirtService)
    svc.uri = URI
    vm = make_vm()
    svc.get_vm.return_value = vm
    svc.list_vms.return_value = [vm]
    svc.has_vm.return_value = True
    svc.list_datastores.return_value = []
    svc.guest_addresses.return_value = []
    svc.clone_vm.return_value = OTHER_UUID
    return svc


@pytest.fixture
def session(tmp_path: Path, settings, credential_store, fake_service) -> Session:
    """Session opened against ``fake_service``."""
    options = Options(
        servers=[URI],
        screenshot_dir=tmp_path / "screenshots",
        script_dir=tmp_path / "scripts",
    )
    factory = MagicMock(return_value=fake_service)
    sess = Session(options, settings=settings, credential_store=credential_store, service_factory=factory)
    sess.open(watch_events=False)
    yield sess
    sess.close()
