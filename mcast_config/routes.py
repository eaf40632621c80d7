# mcast_config/routes.py
import ipaddress
import logging
from collections import namedtuple

from .errors import (
    INPUT,
    OUTPUT,
    InterfaceNotFound,
    InterfaceRoleConflict,
    InvalidAddress,
    MissingTableDependency,
)
from .interfaces import find_by_name, find_by_prefix

logger = logging.getLogger(__name__)

# Satellite node definitions name their satellite NICs satNic0, satNic1, ...
DEFAULT_DISCOVERY_PREFIX = "satNic"

MULTICAST_NETWORK = ipaddress.IPv4Network("224.0.0.0/4")

_RouteSpec = namedtuple(
    "RouteSpec",
    [
        "group",
        "origin",
        "origin_mask",
        "in_interface",
        "out_interfaces",
        "discovery_prefix",
    ],
)


class RouteSpec(_RouteSpec):
    """
    The configured route for one host. All fields are strings.

    `out_interfaces` is a whitespace separated list of interface names. An
    empty `group` disables route installation on the host, an empty
    `in_interface` matches any input interface, and an empty
    `out_interfaces` enables discovery of interfaces named
    `discovery_prefix`*.
    """

    __slots__ = ()

    def __new__(
        cls,
        group="",
        origin="0.0.0.0",
        origin_mask="0.0.0.0",
        in_interface="",
        out_interfaces="",
        discovery_prefix=DEFAULT_DISCOVERY_PREFIX,
    ):
        return super().__new__(
            cls, group, origin, origin_mask, in_interface, out_interfaces, discovery_prefix
        )

    @classmethod
    def from_dict(cls, data):
        return cls(**{key: value for key, value in data.items() if key in cls._fields})


# Built only once every address and interface has been resolved.
MulticastRoute = namedtuple(
    "MulticastRoute",
    ["origin", "origin_mask", "group", "input_interface", "output_interfaces"],
)

RouteSummary = namedtuple(
    "RouteSummary",
    [
        "installed",
        "route",
        "input_interface",
        "output_interfaces",
        "auto_discovered",
        "warnings",
    ],
)


def _not_installed(warnings):
    return RouteSummary(
        installed=False,
        route=None,
        input_interface=None,
        output_interfaces=(),
        auto_discovered=False,
        warnings=tuple(warnings),
    )


def _parse_address(field, value):
    try:
        return ipaddress.IPv4Address(value)
    except ValueError:
        logger.error("Invalid %s address '%s' - aborting route installation.", field, value)
        raise InvalidAddress(field, value) from None


def _resolve_input(spec, inventory):
    if not spec.in_interface:
        logger.info("No input interface specified - packets from any interface will match.")
        return None

    handle = find_by_name(inventory, spec.in_interface)
    if handle is None:
        logger.error(
            "Input interface '%s' not found - aborting route installation.",
            spec.in_interface,
        )
        raise InterfaceNotFound(spec.in_interface, INPUT)

    logger.info("Using input interface: %s (id=%d)", handle.name, handle.id)
    return handle


def _resolve_outputs(spec, inventory, input_handle, warnings):
    """Resolves every named output interface, in the order they were given."""
    outputs = []
    seen = set()
    for token in spec.out_interfaces.split():
        if token in seen:
            message = f"Output interface '{token}' listed more than once; using it once."
            logger.warning(message)
            warnings.append(message)
            continue

        handle = find_by_name(inventory, token)
        if handle is None:
            logger.error(
                "Output interface '%s' not found - aborting route installation.", token
            )
            raise InterfaceNotFound(token, OUTPUT)

        if input_handle is not None and handle.name == input_handle.name:
            logger.error(
                "Interface '%s' is both input and output - aborting route installation.",
                token,
            )
            raise InterfaceRoleConflict(token)

        seen.add(token)
        outputs.append(handle)
        logger.info("Added output interface: %s (id=%d)", handle.name, handle.id)
    return outputs


def _discover_outputs(spec, inventory, input_handle, warnings):
    """Selects every interface named like a satellite NIC, except the input."""
    logger.warning(
        "No output interfaces configured - discovering '%s*' interfaces.",
        spec.discovery_prefix,
    )
    outputs = []
    for handle in find_by_prefix(inventory, spec.discovery_prefix):
        if input_handle is not None and handle.name == input_handle.name:
            continue
        outputs.append(handle)
        logger.info("Auto-added output interface: %s (id=%d)", handle.name, handle.id)

    if not outputs:
        message = (
            f"Discovery found no '{spec.discovery_prefix}*' interfaces; "
            "the route will not forward anywhere."
        )
        logger.warning(message)
        warnings.append(message)
    return outputs


def install_route(spec, inventory, routing_table):
    """
    Resolves the interfaces named by `spec` against `inventory` and submits
    one multicast route to `routing_table`.

    Returns a RouteSummary. A disabled host (empty group) and a discovery
    that found no output interfaces are reported through the summary, not
    raised. Any InstallError means nothing was submitted.

    Installation is not idempotent: calling this twice with the same spec
    submits two routes.
    """
    if not spec.group:
        message = "Group address is empty - not installing any multicast route."
        logger.warning(message)
        return _not_installed([message])

    if inventory is None:
        logger.error("No interface inventory available - aborting route installation.")
        raise MissingTableDependency("interface inventory")
    if routing_table is None:
        logger.error("No routing table available - aborting route installation.")
        raise MissingTableDependency("routing table")

    group = _parse_address("group", spec.group)
    origin = _parse_address("origin", spec.origin)
    origin_mask = _parse_address("origin mask", spec.origin_mask)

    warnings = []
    if group not in MULTICAST_NETWORK:
        message = f"Group address {group} is not a multicast address."
        logger.warning(message)
        warnings.append(message)

    logger.info(
        "Installing multicast route (%s/%s, %s) in='%s' out='%s'",
        origin,
        origin_mask,
        group,
        spec.in_interface,
        spec.out_interfaces,
    )

    input_handle = _resolve_input(spec, inventory)

    auto_discovered = not spec.out_interfaces
    if auto_discovered:
        outputs = _discover_outputs(spec, inventory, input_handle, warnings)
    else:
        outputs = _resolve_outputs(spec, inventory, input_handle, warnings)

    route = MulticastRoute(
        origin=origin,
        origin_mask=origin_mask,
        group=group,
        input_interface=input_handle,
        output_interfaces=tuple(outputs),
    )
    routing_table.submit_multicast_route(route)

    logger.info(
        "Multicast route installed. Routing table now has %d multicast routes.",
        routing_table.multicast_route_count(),
    )
    return RouteSummary(
        installed=True,
        route=route,
        input_interface=input_handle,
        output_interfaces=route.output_interfaces,
        auto_discovered=auto_discovered,
        warnings=tuple(warnings),
    )


def summary_to_dict(summary):
    """Converts a RouteSummary into plain JSON-serialisable data."""
    route = summary.route
    return {
        "installed": summary.installed,
        "auto_discovered": summary.auto_discovered,
        "route": None
        if route is None
        else {
            "origin": str(route.origin),
            "origin_mask": str(route.origin_mask),
            "group": str(route.group),
            "iif": route.input_interface.name if route.input_interface else None,
            "oifs": [handle.name for handle in route.output_interfaces],
        },
        "warnings": list(summary.warnings),
    }
