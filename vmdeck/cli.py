"""Command line interface."""

import argparse
import getpass
import logging
import sys
from pathlib import Path

from vmdeck import __version__
from vmdeck.actions import Action, dispatch
from vmdeck.config import (
    DEFAULT_DOUBLE_CLICK,
    LOG_FILE,
    MAX_MEMORY_MB,
    MAX_VCPUS,
    SCREENSHOT_DIR,
    SCRIPT_DIR,
)
from vmdeck.credentials import CredentialStore
from vmdeck.exceptions import VMDeckError
from vmdeck.logging_config import setup_logging
from vmdeck.models import PowerFilter
from vmdeck.session import Options, Session
from vmdeck.utils import format_bytes, format_percent, format_table

logger = logging.getLogger(__name__)


def _positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not a number: {value}") from None
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1: {value}")
    return number


def _rdp_option(value: str) -> str:
    if value.count(":") < 2:
        raise argparse.ArgumentTypeError(f"expected KEY:TYPE:VALUE, got {value}")
    return value


def _action(value: str) -> Action:
    try:
        return Action.parse(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e)) from None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="vmdeck",
        description="Terminal console for libvirt virtual machines",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "-s", "--server", dest="servers", action="append", default=[], metavar="URI",
        help="libvirt URI to connect to (repeatable; default: last used, else qemu:///system)",
    )
    parser.add_argument("-u", "--user", dest="username", help="Username for authenticated connections")
    parser.add_argument(
        "--save-credential", action="store_true",
        help="Store the credential encrypted for this user and machine",
    )
    parser.add_argument(
        "--forget-credential", action="store_true",
        help="Delete the stored credential of --user for these servers and exit",
    )
    parser.add_argument(
        "--state", choices=[p.value for p in PowerFilter], default=PowerFilter.ALL.value,
        help="Only show VMs in this power state",
    )
    parser.add_argument("--name", dest="name_pattern", default="", metavar="PATTERN",
                        help="Only show VMs matching this shell pattern")
    parser.add_argument(
        "--double-click", type=_action, default=Action.parse(DEFAULT_DOUBLE_CLICK), metavar="ACTION",
        help=f"Action run by Enter on a VM (default: {DEFAULT_DOUBLE_CLICK})",
    )
    parser.add_argument(
        "--rdp-option", dest="rdp_options", action="append", default=[], type=_rdp_option,
        metavar="KEY:TYPE:VALUE", help="Extra line for RDP profiles (repeatable)",
    )
    parser.add_argument("--rdp-user", help="Username written into RDP profiles")
    parser.add_argument("--perf", action="store_true", help="Collect performance statistics")
    parser.add_argument("--screenshot-dir", type=Path, default=SCREENSHOT_DIR, metavar="DIR")
    parser.add_argument("--script-dir", type=Path, default=SCRIPT_DIR, metavar="DIR")
    parser.add_argument("--max-vcpus", type=_positive_int, default=MAX_VCPUS, metavar="N")
    parser.add_argument("--max-memory-mb", type=_positive_int, default=MAX_MEMORY_MB, metavar="N")
    parser.add_argument("--log-file", type=Path, default=LOG_FILE, metavar="PATH")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug output")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    ui_p = subparsers.add_parser("ui", help="Full-screen interface (default)")
    ui_p.set_defaults(func=cmd_ui)

    list_p = subparsers.add_parser("list", help="List VMs")
    list_p.set_defaults(func=cmd_list)

    hosts_p = subparsers.add_parser("hosts", help="List connected servers")
    hosts_p.set_defaults(func=cmd_hosts)

    ds_p = subparsers.add_parser("datastores", help="List storage pools")
    ds_p.set_defaults(func=cmd_datastores)

    snap_p = subparsers.add_parser("snapshots", help="Show the snapshot tree of a VM")
    snap_p.add_argument("vm", help="VM UUID or name")
    snap_p.set_defaults(func=cmd_snapshots)

    exec_p = subparsers.add_parser("exec", help="Run one action against a VM")
    exec_p.add_argument("action", type=_action, help=", ".join(a.value for a in Action))
    exec_p.add_argument("vm", help="VM UUID or name")
    exec_p.add_argument("params", nargs="*", metavar="KEY=VALUE")
    exec_p.set_defaults(func=cmd_exec)

    return parser


def options_from_args(args: argparse.Namespace) -> Options:
    return Options(
        servers=list(dict.fromkeys(args.servers)),
        username=args.username,
        save_credential=args.save_credential,
        power=PowerFilter(args.state),
        name_pattern=args.name_pattern,
        double_click=args.double_click.value,
        rdp_options=args.rdp_options,
        rdp_user=args.rdp_user,
        perf=args.perf,
        screenshot_dir=args.screenshot_dir.expanduser(),
        script_dir=args.script_dir.expanduser(),
        max_vcpus=args.max_vcpus,
        max_memory_mb=args.max_memory_mb,
    )


def parse_params(pairs: list[str]) -> dict[str, str]:
    """Turn ``KEY=VALUE`` arguments into a dict."""
    params: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise ValueError(f"expected KEY=VALUE, got '{pair}'")
        params[key.strip()] = value
    return params


def _password(session: Session) -> str | None:
    """Prompt for a password unless one is stored for the user and server set."""
    username = session.options.username
    if not username:
        return None
    if session.credential_store.load(username, session.servers) is not None:
        return None
    return getpass.getpass(f"Password for {username}: ")


def forget_credential(session: Session) -> int:
    """Remove the stored credential of ``--user`` for the current server set."""
    username = session.options.username
    servers = ", ".join(session.servers)
    if not username:
        print("Error: --forget-credential needs --user", file=sys.stderr)
        return 2
    if session.credential_store.delete(username, session.servers):
        print(f"Removed the stored credential of {username} for {servers}")
        return 0
    print(f"No stored credential of {username} for {servers}", file=sys.stderr)
    return 1


def cmd_ui(session: Session, args: argparse.Namespace) -> int:
    """Run the full-screen interface."""
    from vmdeck.ui.app import App

    return App(session).run()


def cmd_list(session: Session, args: argparse.Namespace) -> int:
    """List VMs."""
    vms = session.list_vms()
    if not vms:
        print("No VMs match.")
        return 0

    headers = ["NAME", "STATE", "CPUS", "MEMORY", "SNAPSHOTS", "SERVER", "UUID"]
    if session.options.perf:
        headers.insert(4, "MEM%")
    rows = []
    for vm in vms:
        row = [vm.name, vm.state.display_name, vm.vcpus, vm.memory_display,
               vm.snapshot_count, vm.server, vm.uuid]
        if session.options.perf:
            row.insert(4, format_percent(vm.stats.memory_percent) if vm.stats else "-")
        rows.append(row)
    print("\n".join(format_table(headers, rows)))
    return 0


def cmd_hosts(session: Session, args: argparse.Namespace) -> int:
    """List connected servers."""
    rows = [
        [h.hostname, h.uri, h.cpus, format_bytes(h.memory_mb * 1024 * 1024), h.vm_count, h.hypervisor_version]
        for h in session.list_hosts()
    ]
    print("\n".join(format_table(["HOST", "URI", "CPUS", "MEMORY", "VMS", "LIBVIRT"], rows)))
    return 0


def cmd_datastores(session: Session, args: argparse.Namespace) -> int:
    """List storage pools."""
    rows = [
        [d.name, "active" if d.active else "inactive", format_bytes(d.capacity_bytes),
         format_bytes(d.available_bytes), format_percent(d.percent_used), d.server]
        for d in session.refresh_datastores()
    ]
    print("\n".join(format_table(["NAME", "STATE", "CAPACITY", "FREE", "USED", "SERVER"], rows)))
    return 0


def cmd_snapshots(session: Session, args: argparse.Namespace) -> int:
    """Print the snapshot tree of a VM."""
    vm = session.resolve_vm(args.vm)
    forest = session.service_for(vm.uuid).snapshot_forest(vm.uuid)
    if not forest:
        print(f"{vm.name} has no snapshots.")
        return 0
    print(vm.name)
    for depth, node in forest.walk():
        indent = "  " * (depth + 1)
        if node.snapshot is None:
            print(f"{indent}* {node.label}")
        else:
            snap = node.snapshot
            print(f"{indent}- {snap.name}  ({snap.created_at:%Y-%m-%d %H:%M}, {snap.state})")
    return 0


def cmd_exec(session: Session, args: argparse.Namespace) -> int:
    """Dispatch one action headlessly."""
    try:
        params = parse_params(args.params)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2
    if args.action is Action.CLONE:
        # the process must outlive the clone thread
        params.setdefault("wait", "true")

    vm = session.resolve_vm(args.vm)
    result = dispatch(session, args.action, vm.uuid, params)
    stream = sys.stdout if result.ok else sys.stderr
    print(result.message, file=stream)
    if args.action is Action.RUN_SCRIPT and isinstance(result.data, dict):
        print(result.data.get("output", ""), end="")
    elif args.action in (Action.GUEST_INFO, Action.EVENTS) and result.data:
        for item in result.data:
            if args.action is Action.EVENTS:
                print(f"{item.time_display}  {item.event}  {item.detail}")
            else:
                print(f"{item.interface}  {item.mac_address}  {item.address}/{item.prefix}")
    return 0 if result.ok else 1


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command is None:
        args.command = "ui"
        args.func = cmd_ui

    headless = args.command != "ui"
    setup_logging(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        log_file=args.log_file,
        console=headless,
    )

    session = Session(options_from_args(args), credential_store=CredentialStore())
    try:
        if args.forget_credential:
            return forget_credential(session)
        session.open(password=_password(session), watch_events=not headless)
        return args.func(session, args)
    except KeyboardInterrupt:
        return 130
    except VMDeckError as e:
        logger.debug("Command failed", exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        session.close()
