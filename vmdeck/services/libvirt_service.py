"""Libvirt service for operating on VMs of one server."""

import logging
import xml.etree.ElementTree as ET
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import Any

import libvirt

from vmdeck.config import DEFAULT_URI
from vmdeck.credentials import Credential
from vmdeck.exceptions import (
    NotConnectedError,
    OperationError,
    SnapshotNotFoundError,
    ValidationError,
    VMDeckError,
    VMNotFoundError,
    is_disconnect,
    translate,
)
from vmdeck.models import (
    VM,
    Datastore,
    GuestAddress,
    Host,
    Snapshot,
    SnapshotForest,
    VMState,
    VMStats,
)

logger = logging.getLogger(__name__)

LIFECYCLE_EVENTS: dict[int, str] = {
    0: "defined",
    1: "undefined",
    2: "started",
    3: "suspended",
    4: "resumed",
    5: "stopped",
    6: "shutdown",
    7: "pmsuspended",
    8: "crashed",
}

SCREENSHOT_EXTENSIONS: dict[str, str] = {
    "image/png": "png",
    "image/x-portable-pixmap": "ppm",
}

LifecycleCallback = Callable[[str, str, str, str, int], None]


class LibvirtService:
    """Service for interacting with one libvirt server."""

    def __init__(self, uri: str = DEFAULT_URI, credential: Credential | None = None) -> None:
        self._uri = uri
        self._credential = credential
        self._conn: libvirt.virConnect | None = None

    @property
    def uri(self) -> str:
        return self._uri

    def connect(self) -> None:
        """Open the connection, authenticating with the stored credential if any."""
        try:
            if self._credential is not None:
                auth = [
                    [libvirt.VIR_CRED_AUTHNAME, libvirt.VIR_CRED_PASSPHRASE],
                    self._auth_callback,
                    None,
                ]
                self._conn = libvirt.openAuth(self._uri, auth, 0)
            else:
                self._conn = libvirt.open(self._uri)
        except libvirt.libvirtError as e:
            self._conn = None
            raise NotConnectedError(self._uri, cause=e) from e
        if self._conn is None:
            raise NotConnectedError(self._uri)
        logger.info("Connected to %s", self._uri)

    def _auth_callback(self, creds: list[list[Any]], opaque: Any) -> int:
        assert self._credential is not None
        for cred in creds:
            if cred[0] == libvirt.VIR_CRED_AUTHNAME:
                cred[4] = self._credential.username
            elif cred[0] == libvirt.VIR_CRED_PASSPHRASE:
                cred[4] = self._credential.password
            else:
                return -1
        return 0

    def disconnect(self) -> None:
        """Disconnect from libvirt."""
        if self._conn is not None:
            try:
                self._conn.close()
            except libvirt.libvirtError as e:
                logger.debug("Ignoring error while closing %s: %s", self._uri, e)
            self._conn = None
            logger.info("Disconnected from %s", self._uri)

    def reconnect(self) -> None:
        """Drop the connection and open a new one."""
        logger.warning("Reconnecting to %s", self._uri)
        self.disconnect()
        self.connect()

    @property
    def is_connected(self) -> bool:
        if self._conn is None:
            return False
        try:
            return bool(self._conn.isAlive())
        except libvirt.libvirtError:
            return False

    @property
    def conn(self) -> libvirt.virConnect:
        """Get connection, connecting if needed."""
        if self._conn is None:
            self.connect()
        assert self._conn is not None
        return self._conn

    def _domain(self, uuid: str) -> libvirt.virDomain:
        """Fresh domain lookup by UUID."""
        try:
            return self.conn.lookupByUUIDString(uuid)
        except libvirt.libvirtError as e:
            # malformed UUIDs come back as VIR_ERR_INVALID_ARG
            if e.get_error_code() in (libvirt.VIR_ERR_NO_DOMAIN, libvirt.VIR_ERR_INVALID_ARG):
                raise VMNotFoundError(uuid) from e
            raise translate(e, self._uri, "Look up VM") from e

    def has_vm(self, uuid: str) -> bool:
        try:
            self._domain(uuid)
        except VMNotFoundError:
            return False
        return True

    # Listing

    def list_vms(self, include_stats: bool = False) -> list[VM]:
        """List all VMs defined on this server."""
        try:
            domains = self.conn.listAllDomains()
        except libvirt.libvirtError as e:
            raise translate(e, self._uri, "List VMs") from e

        vms: list[VM] = []
        for domain in domains:
            try:
                vms.append(self._domain_to_vm(domain, include_stats))
            except libvirt.libvirtError as e:
                if e.get_error_code() == libvirt.VIR_ERR_NO_DOMAIN:
                    # Undefined between listing and inspection
                    continue
                raise translate(e, self._uri, "List VMs") from e
        return sorted(vms, key=lambda v: v.name.lower())

    def get_vm(self, uuid: str, include_stats: bool = False) -> VM:
        """Get a VM by UUID, always asking the server."""
        domain = self._domain(uuid)
        try:
            return self._domain_to_vm(domain, include_stats)
        except libvirt.libvirtError as e:
            raise translate(e, self._uri, "Read VM") from e

    def _domain_to_vm(self, domain: libvirt.virDomain, include_stats: bool = False) -> VM:
        """Convert libvirt domain to VM model."""
        state, _ = domain.state()
        info = domain.info()
        xml = ET.fromstring(domain.XMLDesc())

        disks: list[Path] = []
        for source in xml.findall("./devices/disk[@device='disk']/source"):
            file_path = source.get("file")
            if file_path:
                disks.append(Path(file_path))

        iso_path: Path | None = None
        cdrom = xml.find("./devices/disk[@device='cdrom']/source")
        if cdrom is not None and cdrom.get("file"):
            iso_path = Path(cdrom.get("file", ""))

        graphics_type = "none"
        graphics_port: int | None = None
        graphics = xml.find("./devices/graphics")
        if graphics is not None:
            graphics_type = graphics.get("type", "none")
            port = graphics.get("port")
            if port and port != "-1":
                graphics_port = int(port)

        try:
            autostart = bool(domain.autostart())
        except libvirt.libvirtError:
            autostart = False

        snapshot_count = domain.snapshotNum()
        current_snapshot: str | None = None
        if snapshot_count and domain.hasCurrentSnapshot():
            current_snapshot = domain.snapshotCurrent().getName()

        stats: VMStats | None = None
        if include_stats and state == libvirt.VIR_DOMAIN_RUNNING:
            stats = self._get_vm_stats(domain, info, xml)

        return VM(
            uuid=domain.UUIDString(),
            name=domain.name(),
            server=self._uri,
            state=VMState(state),
            vcpus=info[3],
            memory_mb=info[2] // 1024,
            autostart=autostart,
            persistent=bool(domain.isPersistent()),
            disks=disks,
            iso_path=iso_path,
            graphics_type=graphics_type,
            graphics_port=graphics_port,
            snapshot_count=snapshot_count,
            current_snapshot=current_snapshot,
            stats=stats,
        )

    def _get_vm_stats(self, domain: libvirt.virDomain, info: list[Any], xml: ET.Element) -> VMStats:
        """Get runtime statistics for a running VM."""
        stats = VMStats(cpu_time_ns=info[4])

        try:
            mem_stats = domain.memoryStats()
        except libvirt.libvirtError:
            mem_stats = {}
        stats.memory_used_kb = mem_stats.get("actual", 0)
        available = mem_stats.get("available", 0)
        unused = mem_stats.get("unused")
        if available and unused is not None:
            stats.memory_percent = ((available - unused) / available) * 100

        for target in xml.findall("./devices/disk[@device='disk']/target"):
            dev = target.get("dev")
            if not dev:
                continue
            try:
                block_stats = domain.blockStats(dev)
            except libvirt.libvirtError:
                continue
            stats.disk_read_bytes += block_stats[1]
            stats.disk_write_bytes += block_stats[3]

        for target in xml.findall("./devices/interface/target"):
            dev = target.get("dev")
            if not dev:
                continue
            try:
                net_stats = domain.interfaceStats(dev)
            except libvirt.libvirtError:
                continue
            stats.net_rx_bytes += net_stats[0]
            stats.net_tx_bytes += net_stats[4]

        return stats

    # Power operations

    def _power(self, uuid: str, operation: str, call: Callable[[libvirt.virDomain], Any]) -> None:
        domain = self._domain(uuid)
        try:
            call(domain)
        except libvirt.libvirtError as e:
            raise translate(e, self._uri, operation) from e
        logger.info("%s: %s (%s)", operation, domain.name(), uuid)

    def start(self, uuid: str) -> None:
        self._power(uuid, "Power on", lambda d: d.create())

    def shutdown(self, uuid: str) -> None:
        """Ask the guest OS to shut down."""
        self._power(uuid, "Shut down guest", lambda d: d.shutdown())

    def reboot(self, uuid: str) -> None:
        """Ask the guest OS to restart."""
        self._power(uuid, "Restart guest", lambda d: d.reboot(0))

    def reset(self, uuid: str) -> None:
        """Hard reset, like pressing the reset button."""
        self._power(uuid, "Reset", lambda d: d.reset(0))

    def power_off(self, uuid: str) -> None:
        self._power(uuid, "Power off", lambda d: d.destroy())

    def suspend(self, uuid: str) -> None:
        self._power(uuid, "Suspend", lambda d: d.suspend())

    def resume(self, uuid: str) -> None:
        self._power(uuid, "Resume", lambda d: d.resume())

    # Reconfiguration

    def set_vcpus(self, uuid: str, vcpus: int) -> None:
        """Set vCPU count in the persistent config (applies on next boot)."""
        domain = self._domain(uuid)
        try:
            domain.setVcpusFlags(
                vcpus,
                libvirt.VIR_DOMAIN_AFFECT_CONFIG | libvirt.VIR_DOMAIN_VCPU_MAXIMUM,
            )
            domain.setVcpusFlags(vcpus, libvirt.VIR_DOMAIN_AFFECT_CONFIG)
        except libvirt.libvirtError as e:
            raise translate(e, self._uri, "Set vCPUs") from e
        logger.info("Set vCPUs of %s to %d", domain.name(), vcpus)

    def set_memory(self, uuid: str, memory_mb: int) -> None:
        """Set memory in the persistent config (applies on next boot)."""
        domain = self._domain(uuid)
        memory_kb = memory_mb * 1024
        try:
            domain.setMemoryFlags(
                memory_kb,
                libvirt.VIR_DOMAIN_AFFECT_CONFIG | libvirt.VIR_DOMAIN_MEM_MAXIMUM,
            )
            domain.setMemoryFlags(memory_kb, libvirt.VIR_DOMAIN_AFFECT_CONFIG)
        except libvirt.libvirtError as e:
            raise translate(e, self._uri, "Set memory") from e
        logger.info("Set memory of %s to %d MB", domain.name(), memory_mb)

    # Removable media

    def attach_iso(self, uuid: str, iso_path: str) -> None:
        """Insert an ISO (path on the server) into the VM's CD-ROM drive."""
        domain = self._domain(uuid)
        try:
            xml = ET.fromstring(domain.XMLDesc(libvirt.VIR_DOMAIN_XML_INACTIVE))
            devices = xml.find("devices")
            if devices is None:
                raise OperationError("Mount ISO", "no devices section in VM XML")

            cdrom = devices.find("disk[@device='cdrom']")
            if cdrom is None:
                if domain.isActive():
                    raise OperationError(
                        "Mount ISO",
                        "VM has no CD-ROM drive; power it off to add one",
                    )
                cdrom = ET.SubElement(devices, "disk", {"type": "file", "device": "cdrom"})
                ET.SubElement(cdrom, "driver", {"name": "qemu", "type": "raw"})
                ET.SubElement(cdrom, "target", {"dev": "sdz", "bus": "sata"})
                ET.SubElement(cdrom, "readonly")
                ET.SubElement(cdrom, "source", {"file": iso_path})
                self.conn.defineXML(ET.tostring(xml, encoding="unicode"))
                logger.info("Added CD-ROM with %s to %s", iso_path, domain.name())
                return

            old_source = cdrom.find("source")
            if old_source is not None:
                cdrom.remove(old_source)
            cdrom.set("type", "file")
            ET.SubElement(cdrom, "source", {"file": iso_path})
            self._update_device(domain, cdrom)
        except libvirt.libvirtError as e:
            raise translate(e, self._uri, "Mount ISO") from e
        logger.info("Mounted %s on %s", iso_path, domain.name())

    def eject_iso(self, uuid: str) -> None:
        """Eject whatever is in the VM's CD-ROM drive."""
        domain = self._domain(uuid)
        try:
            xml = ET.fromstring(domain.XMLDesc(libvirt.VIR_DOMAIN_XML_INACTIVE))
            cdrom = xml.find("./devices/disk[@device='cdrom']")
            if cdrom is None:
                raise OperationError("Eject ISO", "VM has no CD-ROM drive")
            source = cdrom.find("source")
            if source is None:
                return
            cdrom.remove(source)
            self._update_device(domain, cdrom)
        except libvirt.libvirtError as e:
            raise translate(e, self._uri, "Eject ISO") from e
        logger.info("Ejected ISO from %s", domain.name())

    def _update_device(self, domain: libvirt.virDomain, device: ET.Element) -> None:
        flags = libvirt.VIR_DOMAIN_AFFECT_CONFIG
        if domain.isActive():
            flags |= libvirt.VIR_DOMAIN_AFFECT_LIVE
        domain.updateDeviceFlags(ET.tostring(device, encoding="unicode"), flags)

    # Snapshots

    def list_snapshots(self, uuid: str) -> list[Snapshot]:
        """List snapshot records of a VM in server order."""
        domain = self._domain(uuid)
        try:
            return [self._parse_snapshot(snap) for snap in domain.listAllSnapshots()]
        except libvirt.libvirtError as e:
            raise translate(e, self._uri, "List snapshots") from e

    def _parse_snapshot(self, snap: libvirt.virDomainSnapshot) -> Snapshot:
        xml = ET.fromstring(snap.getXMLDesc())

        desc_elem = xml.find("description")
        description = desc_elem.text if desc_elem is not None and desc_elem.text else ""

        time_elem = xml.find("creationTime")
        created_at = datetime.fromtimestamp(
            int(time_elem.text) if time_elem is not None and time_elem.text else 0
        )

        state_elem = xml.find("state")
        state = state_elem.text if state_elem is not None and state_elem.text else "unknown"

        parent_elem = xml.find("parent/name")
        parent_id = parent_elem.text if parent_elem is not None else None

        return Snapshot(
            id=snap.getName(),
            name=snap.getName(),
            created_at=created_at,
            parent_id=parent_id,
            description=description,
            state=state,
        )

    def current_snapshot_id(self, uuid: str) -> str | None:
        domain = self._domain(uuid)
        try:
            if not domain.hasCurrentSnapshot():
                return None
            return domain.snapshotCurrent().getName()
        except libvirt.libvirtError as e:
            raise translate(e, self._uri, "Read current snapshot") from e

    def snapshot_forest(self, uuid: str) -> SnapshotForest:
        """Build the snapshot tree of a VM from scratch."""
        records = self.list_snapshots(uuid)
        return SnapshotForest.build(records, self.current_snapshot_id(uuid))

    def create_snapshot(self, uuid: str, name: str, description: str = "") -> Snapshot:
        """Take a snapshot (includes memory when the VM is running)."""
        domain = self._domain(uuid)
        root = ET.Element("domainsnapshot")
        ET.SubElement(root, "name").text = name
        ET.SubElement(root, "description").text = description
        try:
            snap = domain.snapshotCreateXML(ET.tostring(root, encoding="unicode"), 0)
            record = self._parse_snapshot(snap)
        except libvirt.libvirtError as e:
            raise translate(e, self._uri, "Create snapshot") from e
        logger.info("Created snapshot '%s' of %s", name, domain.name())
        return record

    def _snapshot(self, domain: libvirt.virDomain, snapshot_id: str) -> libvirt.virDomainSnapshot:
        try:
            return domain.snapshotLookupByName(snapshot_id)
        except libvirt.libvirtError as e:
            if e.get_error_code() == libvirt.VIR_ERR_NO_DOMAIN_SNAPSHOT:
                raise SnapshotNotFoundError(domain.name(), snapshot_id) from e
            raise translate(e, self._uri, "Look up snapshot") from e

    def revert_snapshot(self, uuid: str, snapshot_id: str) -> None:
        """Revert to a snapshot."""
        domain = self._domain(uuid)
        snapshot = self._snapshot(domain, snapshot_id)
        try:
            domain.revertToSnapshot(snapshot)
        except libvirt.libvirtError as e:
            raise translate(e, self._uri, "Revert snapshot") from e
        logger.info("Reverted %s to snapshot '%s'", domain.name(), snapshot_id)

    def delete_snapshot(self, uuid: str, snapshot_id: str, children: bool = False) -> None:
        """Delete a snapshot, optionally with its whole subtree."""
        domain = self._domain(uuid)
        snapshot = self._snapshot(domain, snapshot_id)
        flags = libvirt.VIR_DOMAIN_SNAPSHOT_DELETE_CHILDREN if children else 0
        try:
            snapshot.delete(flags)
        except libvirt.libvirtError as e:
            raise translate(e, self._uri, "Delete snapshot") from e
        logger.info("Deleted snapshot '%s' of %s", snapshot_id, domain.name())

    # Guest and inventory information

    def guest_addresses(self, uuid: str) -> list[GuestAddress]:
        """Addresses reported by the guest agent, or DHCP leases as fallback."""
        domain = self._domain(uuid)
        if not domain.isActive():
            return []

        interfaces: dict[str, Any] = {}
        for source in (
            libvirt.VIR_DOMAIN_INTERFACE_ADDRESSES_SRC_AGENT,
            libvirt.VIR_DOMAIN_INTERFACE_ADDRESSES_SRC_LEASE,
        ):
            try:
                interfaces = domain.interfaceAddresses(source, 0)
            except libvirt.libvirtError as e:
                if is_disconnect(e):
                    raise NotConnectedError(self._uri, cause=e) from e
                logger.debug("Address source %d unavailable for %s: %s", source, domain.name(), e)
                continue
            if interfaces:
                break

        addresses: list[GuestAddress] = []
        for name, data in interfaces.items():
            if name == "lo":
                continue
            for addr in data.get("addrs") or []:
                addresses.append(GuestAddress(
                    interface=name,
                    mac_address=data.get("hwaddr") or "",
                    address=addr.get("addr", ""),
                    prefix=addr.get("prefix", 0),
                ))
        return addresses

    def host_info(self) -> Host:
        """Describe the server this service is connected to."""
        try:
            info = self.conn.getInfo()
            version = self.conn.getLibVersion()
            return Host(
                uri=self._uri,
                hostname=self.conn.getHostname(),
                cpu_model=info[0],
                cpus=info[2],
                memory_mb=info[1],
                hypervisor_version=f"{version // 1000000}.{(version // 1000) % 1000}.{version % 1000}",
                vm_count=len(self.conn.listAllDomains()),
            )
        except libvirt.libvirtError as e:
            raise translate(e, self._uri, "Read host") from e

    def list_datastores(self) -> list[Datastore]:
        """List storage pools of this server."""
        try:
            pools = self.conn.listAllStoragePools()
            datastores: list[Datastore] = []
            for pool in pools:
                _, capacity, allocation, available = pool.info()
                datastores.append(Datastore(
                    uuid=pool.UUIDString(),
                    name=pool.name(),
                    server=self._uri,
                    active=bool(pool.isActive()),
                    capacity_bytes=capacity,
                    allocation_bytes=allocation,
                    available_bytes=available,
                ))
        except libvirt.libvirtError as e:
            raise translate(e, self._uri, "List datastores") from e
        return sorted(datastores, key=lambda d: d.name.lower())

    def screenshot(self, uuid: str, directory: Path) -> Path:
        """Capture the VM's primary display into ``directory``."""
        domain = self._domain(uuid)
        if not domain.isActive():
            raise ValidationError(f"VM '{domain.name()}' is not running", field="vm")

        stamp = datetime.now().strftime("%Y%m%d-%H%M%S")
        stream = self.conn.newStream(0)
        try:
            directory.mkdir(parents=True, exist_ok=True)
            mime = domain.screenshot(stream, 0, 0)
            ext = SCREENSHOT_EXTENSIONS.get(mime, "img")
            path = directory / f"{domain.name()}-{stamp}.{ext}"
            with open(path, "wb") as f:
                stream.recvAll(lambda _stream, data, fh: fh.write(data), f)
            stream.finish()
        except libvirt.libvirtError as e:
            self._abort_stream(stream)
            raise translate(e, self._uri, "Screenshot") from e
        except OSError as e:
            self._abort_stream(stream)
            raise OperationError("Screenshot", f"cannot write to {directory}: {e.strerror or e}", cause=e) from e
        logger.info("Saved screenshot of %s to %s", domain.name(), path)
        return path

    @staticmethod
    def _abort_stream(stream: libvirt.virStream) -> None:
        try:
            stream.abort()
        except libvirt.libvirtError as e:
            logger.debug("Stream abort failed: %s", e)

    # Clone

    def clone_vm(
        self,
        uuid: str,
        new_name: str,
        linked: bool = True,
        datastore_uuid: str | None = None,
    ) -> str:
        """Clone a VM and return the new VM's UUID.

        A linked clone takes an external disk-only snapshot of the source so
        its current disks become read-only bases, then creates qcow2 overlays
        backed by them. A full clone copies every disk volume.
        """
        domain = self._domain(uuid)
        try:
            self.conn.lookupByName(new_name)
        except libvirt.libvirtError as e:
            if e.get_error_code() != libvirt.VIR_ERR_NO_DOMAIN:
                raise translate(e, self._uri, "Clone") from e
        else:
            raise ValidationError(f"A VM named '{new_name}' already exists", field="name")

        created: list[libvirt.virStorageVol] = []
        base_taken = False
        try:
            xml = ET.fromstring(domain.XMLDesc(libvirt.VIR_DOMAIN_XML_INACTIVE))
            disks = xml.findall("./devices/disk[@device='disk']")
            if not disks:
                raise OperationError("Clone", f"'{domain.name()}' has no disks")

            if linked:
                self._take_base_snapshot(domain, new_name, disks)
                base_taken = True
            elif domain.isActive() and domain.state()[0] != libvirt.VIR_DOMAIN_PAUSED:
                raise ValidationError(
                    "Full clone requires the VM to be powered off or paused",
                    field="vm",
                )

            pool = self._pool(datastore_uuid) if datastore_uuid else None
            for disk in disks:
                created.append(self._clone_disk(disk, new_name, linked, pool))

            name_elem = xml.find("name")
            if name_elem is not None:
                name_elem.text = new_name
            uuid_elem = xml.find("uuid")
            if uuid_elem is not None:
                xml.remove(uuid_elem)
            # libvirt generates fresh MACs for interfaces without one
            for iface in xml.findall("./devices/interface"):
                mac = iface.find("mac")
                if mac is not None:
                    iface.remove(mac)

            new_domain = self.conn.defineXML(ET.tostring(xml, encoding="unicode"))
            if new_domain is None:
                raise OperationError("Clone", "server did not define the new VM")
            new_uuid = new_domain.UUIDString()
        except (libvirt.libvirtError, VMDeckError) as e:
            self._undo_clone(domain, new_name, created, base_taken)
            if isinstance(e, libvirt.libvirtError):
                raise translate(e, self._uri, "Clone") from e
            raise

        logger.info(
            "Cloned %s to %s (%s, %s)",
            domain.name(), new_name, "linked" if linked else "full", new_uuid,
        )
        return new_uuid

    def _undo_clone(
        self,
        domain: libvirt.virDomain,
        new_name: str,
        volumes: list[libvirt.virStorageVol],
        base_taken: bool,
    ) -> None:
        """Remove what a failed clone left behind.

        The source keeps running on the overlays its base snapshot created;
        only the snapshot metadata is dropped.
        """
        for vol in reversed(volumes):
            try:
                vol.delete(0)
                logger.info("Removed partial clone volume %s", vol.name())
            except libvirt.libvirtError as e:
                logger.error("Could not remove clone volume %s: %s", vol.name(), e)
        if base_taken:
            try:
                domain.snapshotLookupByName(f"{new_name}-base", 0).delete(
                    libvirt.VIR_DOMAIN_SNAPSHOT_DELETE_METADATA_ONLY
                )
            except libvirt.libvirtError as e:
                logger.error("Could not drop base snapshot %s-base: %s", new_name, e)

    def _take_base_snapshot(
        self,
        domain: libvirt.virDomain,
        new_name: str,
        disks: list[ET.Element],
    ) -> None:
        root = ET.Element("domainsnapshot")
        ET.SubElement(root, "name").text = f"{new_name}-base"
        ET.SubElement(root, "description").text = f"Base of linked clone {new_name}"
        disks_elem = ET.SubElement(root, "disks")
        for disk in disks:
            target = disk.find("target")
            if target is not None:
                ET.SubElement(disks_elem, "disk", {"name": target.get("dev", ""), "snapshot": "external"})
        domain.snapshotCreateXML(
            ET.tostring(root, encoding="unicode"),
            libvirt.VIR_DOMAIN_SNAPSHOT_CREATE_DISK_ONLY | libvirt.VIR_DOMAIN_SNAPSHOT_CREATE_ATOMIC,
        )

    def _pool(self, pool_uuid: str) -> libvirt.virStoragePool:
        try:
            return self.conn.storagePoolLookupByUUIDString(pool_uuid)
        except libvirt.libvirtError as e:
            if e.get_error_code() == libvirt.VIR_ERR_NO_STORAGE_POOL:
                raise ValidationError(f"Datastore '{pool_uuid}' not found", field="datastore") from e
            raise translate(e, self._uri, "Clone") from e

    def _clone_disk(
        self,
        disk: ET.Element,
        new_name: str,
        linked: bool,
        pool: libvirt.virStoragePool | None,
    ) -> libvirt.virStorageVol:
        """Create the clone's volume for one disk and point the disk at it."""
        source = disk.find("source")
        target = disk.find("target")
        path = source.get("file") if source is not None else None
        if source is None or not path:
            raise OperationError("Clone", "only file-backed disks can be cloned")

        driver = disk.find("driver")
        src_format = driver.get("type", "raw") if driver is not None else "raw"
        dev = target.get("dev", "disk") if target is not None else "disk"

        src_vol = self.conn.storageVolLookupByPath(path)
        dest_pool = pool or src_vol.storagePoolLookupByVolume()
        capacity = src_vol.info()[1]

        vol = ET.Element("volume")
        ET.SubElement(vol, "name").text = f"{new_name}-{dev}.qcow2"
        ET.SubElement(vol, "capacity", {"unit": "bytes"}).text = str(capacity)
        vol_target = ET.SubElement(vol, "target")
        ET.SubElement(vol_target, "format", {"type": "qcow2"})

        if linked:
            backing = ET.SubElement(vol, "backingStore")
            ET.SubElement(backing, "path").text = path
            ET.SubElement(backing, "format", {"type": src_format})
            new_vol = dest_pool.createXML(ET.tostring(vol, encoding="unicode"), 0)
        else:
            new_vol = dest_pool.createXMLFrom(ET.tostring(vol, encoding="unicode"), src_vol, 0)

        disk.set("type", "file")
        for attr in list(source.attrib):
            del source.attrib[attr]
        source.set("file", new_vol.path())
        if driver is not None:
            driver.set("type", "qcow2")
        backing_store = disk.find("backingStore")
        if backing_store is not None:
            disk.remove(backing_store)
        return new_vol

    # Events

    def register_lifecycle_events(self, callback: LifecycleCallback) -> int:
        """Call ``callback(uuid, name, server, event, detail)`` on lifecycle events.

        The default libvirt event implementation must be registered before
        the connection is opened.
        """
        def on_event(conn: Any, domain: libvirt.virDomain, event: int, detail: int, opaque: Any) -> None:
            callback(
                domain.UUIDString(),
                domain.name(),
                self._uri,
                LIFECYCLE_EVENTS.get(event, f"event {event}"),
                detail,
            )

        try:
            return self.conn.domainEventRegisterAny(
                None,
                libvirt.VIR_DOMAIN_EVENT_ID_LIFECYCLE,
                on_event,
                None,
            )
        except libvirt.libvirtError as e:
            raise translate(e, self._uri, "Register events") from e
