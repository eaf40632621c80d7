# mcast_config/interfaces.py
import logging
from collections import namedtuple

from pyroute2 import IPRoute

logger = logging.getLogger(__name__)

# Source: <uapi/linux/if.h>
IFF_UP = 0x1

# A borrowed reference to an interface owned by an inventory.
InterfaceHandle = namedtuple("InterfaceHandle", ["name", "id", "is_up"])


def find_by_name(inventory, name):
    """
    Returns the first interface in enumeration order whose name is exactly
    `name`, or None. Names are case sensitive. If the inventory holds two
    interfaces with the same name, the first one enumerated wins.
    """
    for i in range(inventory.count()):
        handle = inventory.get(i)
        if handle.name == name:
            return handle
    return None


class PrefixMatches:
    """
    The interfaces of an inventory whose names start with a prefix.

    Nothing is read until iteration starts, and every new iteration walks
    the inventory again from the first interface.
    """

    def __init__(self, inventory, prefix):
        self.inventory = inventory
        self.prefix = prefix

    def __iter__(self):
        for i in range(self.inventory.count()):
            handle = self.inventory.get(i)
            if handle.name.startswith(self.prefix):
                yield handle

    def __repr__(self):
        return f"PrefixMatches(prefix={self.prefix!r})"


def find_by_prefix(inventory, prefix):
    """Returns a restartable iterable of interfaces whose name starts with `prefix`."""
    return PrefixMatches(inventory, prefix)


def describe_inventory(inventory):
    """Logs every interface of the inventory, one record each."""
    logger.info("Interface inventory has %d interfaces:", inventory.count())
    for i in range(inventory.count()):
        handle = inventory.get(i)
        logger.info(
            "  IF[%d]: name=%s id=%d is_up=%s", i, handle.name, handle.id, handle.is_up
        )


class StaticInventory:
    """An interface inventory backed by a fixed list of handles."""

    def __init__(self, handles=()):
        self.handles = list(handles)

    @classmethod
    def from_names(cls, names):
        """Builds an inventory of up interfaces with ids 1..N in the given order."""
        return cls(
            InterfaceHandle(name=name, id=index, is_up=True)
            for index, name in enumerate(names, start=1)
        )

    def count(self):
        return len(self.handles)

    def get(self, index):
        return self.handles[index]

    def find_by_name(self, name):
        return find_by_name(self, name)


class NetlinkInventory:
    """
    A snapshot of the host's network interfaces read over rtnetlink.

    The snapshot is taken on construction and on refresh(); the inventory
    does not follow interfaces appearing or disappearing afterwards. Handle
    ids are kernel ifindexes, which is what the kernel routing table needs.
    """

    def __init__(self, ipr=None):
        self._owns_ipr = ipr is None
        self.ipr = ipr if ipr is not None else IPRoute()
        self.handles = []
        self.refresh()

    def refresh(self):
        handles = []
        for link in self.ipr.get_links():
            handles.append(
                InterfaceHandle(
                    name=link.get_attr("IFLA_IFNAME"),
                    id=link["index"],
                    is_up=bool(link["flags"] & IFF_UP),
                )
            )
        handles.sort(key=lambda handle: handle.id)
        self.handles = handles
        logger.debug("Read %d interfaces from the kernel.", len(handles))

    def count(self):
        return len(self.handles)

    def get(self, index):
        return self.handles[index]

    def find_by_name(self, name):
        return find_by_name(self, name)

    def close(self):
        if self._owns_ipr and self.ipr is not None:
            self.ipr.close()
            self.ipr = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()
