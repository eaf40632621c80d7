# mcast_config/cli.py
import argparse
import json
import logging
import os
import signal
import sys
import time

from .config import DEFAULT_CONFIG_PATH, DEFAULT_LOG_LEVEL, load_config, load_route_spec
from .errors import InstallError
from .interfaces import NetlinkInventory, describe_inventory
from .kernel_ffi import KernelRoutingTable
from .routes import install_route, summary_to_dict
from .routing_table import MulticastRoutingTable

logger = logging.getLogger(__name__)


class RouteHolder:
    """Keeps the process (and with it the kernel routes) alive until signalled."""

    def __init__(self):
        self._running = False

    def stop(self):
        logger.info("Shutdown signal received, releasing multicast routes.")
        self._running = False

    def _signal_handler(self, signum, frame):
        self.stop()

    def run(self, poll_interval=0.5):
        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)
        self._running = True
        while self._running:
            time.sleep(poll_interval)


def _print_interfaces(inventory):
    print(f"{'Index':<7} {'Interface':<16} {'State'}")
    print("-" * 32)
    for i in range(inventory.count()):
        handle = inventory.get(i)
        state = "UP" if handle.is_up else "DOWN"
        print(f"{handle.id:<7} {handle.name:<16} {state}")


def _print_summary(summary):
    """Formats and prints the outcome of an installation."""
    route = summary["route"]
    if not summary["installed"]:
        print("No multicast route installed.")
    else:
        source = f"{route['origin']}/{route['origin_mask']}"
        oifs_str = ", ".join(route["oifs"]) if route["oifs"] else "(none)"
        print(f"{'Source':<34} {'Group':<18} {'IIF':<15} {'OIFs'}")
        print("-" * 80)
        print(f"{source:<34} {route['group']:<18} {route['iif'] or '*':<15} {oifs_str}")
        if summary["auto_discovered"]:
            print("\nOutput interfaces were discovered automatically.")
    for warning in summary["warnings"]:
        print(f"WARNING: {warning}")


def _install(args, settings):
    overrides = {
        "group": args.group,
        "origin": args.origin,
        "origin_mask": args.mask,
        "in_interface": args.iif,
        "out_interfaces": args.oifs,
        "discovery_prefix": args.prefix,
    }
    try:
        spec = load_route_spec(settings=settings, overrides=overrides)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    dry_run = args.dry_run or settings["routing_table"] == "memory"
    if not dry_run and os.geteuid() != 0:
        print(
            "ERROR: Installing kernel multicast routes requires root privileges.",
            file=sys.stderr,
        )
        return 1

    with NetlinkInventory() as inventory:
        describe_inventory(inventory)

        if dry_run:
            table = MulticastRoutingTable()
            try:
                summary = install_route(spec, inventory, table)
            except InstallError as e:
                print(f"Error: {e}", file=sys.stderr)
                return 1
            _report(summary, args.json)
            return 0

        if spec.group and not spec.in_interface:
            logger.error(
                "Kernel multicast routes need an input interface; set in_interface or use --dry-run."
            )
            print("Error: an input interface is required for kernel routes.", file=sys.stderr)
            return 1

        table = KernelRoutingTable()
        try:
            table.mrt_init()
            summary = install_route(spec, inventory, table)
            _report(summary, args.json)
            if summary.installed:
                RouteHolder().run()
        except (InstallError, OSError, RuntimeError, ValueError) as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1
        finally:
            table.mrt_done()
    return 0


def _report(summary, as_json):
    data = summary_to_dict(summary)
    if as_json:
        print(json.dumps(data, indent=2))
    else:
        _print_summary(data)


def _interfaces(args):
    with NetlinkInventory() as inventory:
        if args.json:
            print(json.dumps([handle._asdict() for handle in inventory.handles], indent=2))
        else:
            _print_interfaces(inventory)
    return 0


def main(argv=None):
    parser = argparse.ArgumentParser(description="Static multicast route installer")
    parser.add_argument(
        "--config",
        default=DEFAULT_CONFIG_PATH,
        help=f"Path to the configuration file (default: {DEFAULT_CONFIG_PATH})",
    )
    parser.add_argument("--log-level", help="Logging level (default from config: INFO)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # --- 'install' command ---
    install_parser = subparsers.add_parser("install", help="Install the multicast route")
    install_parser.add_argument("--group", help="Multicast group IP address")
    install_parser.add_argument("--origin", help="Origin (source) IP address")
    install_parser.add_argument("--mask", help="Origin netmask")
    install_parser.add_argument("--iif", help="Input interface name")
    install_parser.add_argument(
        "--oifs", help="Space-separated list of output interfaces"
    )
    install_parser.add_argument(
        "--prefix", help="Name prefix used to discover output interfaces"
    )
    install_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Resolve and build the route without touching the kernel",
    )
    install_parser.add_argument(
        "--json", action="store_true", help="Output raw JSON instead of a table"
    )

    # --- 'interfaces' command ---
    interfaces_parser = subparsers.add_parser(
        "interfaces", help="List the host's network interfaces"
    )
    interfaces_parser.add_argument(
        "--json", action="store_true", help="Output raw JSON instead of a table"
    )

    args = parser.parse_args(argv)

    settings = load_config(args.config)
    log_level = (args.log_level or settings["log_level"]).upper()
    known_level = isinstance(logging.getLevelName(log_level), int)
    logging.basicConfig(
        level=log_level if known_level else DEFAULT_LOG_LEVEL,
        format="[%(levelname)s] %(name)s: %(message)s",
    )
    if not known_level:
        logger.warning("Unknown log level '%s', using '%s'.", log_level, DEFAULT_LOG_LEVEL)

    if args.command == "install":
        return _install(args, settings)
    return _interfaces(args)


if __name__ == "__main__":
    sys.exit(main())
