# mcast_config/kernel_ffi.py
import logging
import os
import socket
import sys

from cffi import FFI

logger = logging.getLogger(__name__)

# Source: <uapi/linux/in.h>
IPPROTO_IP = 0
IPPROTO_IGMP = 2

# Source: <uapi/linux/mroute.h>
MRT_INIT = 200
MRT_DONE = 201
MRT_ADD_VIF = 202
MRT_DEL_VIF = 203
MRT_ADD_MFC = 204

MAXVIFS = 32
VIFF_USE_IFINDEX = 0x8


class KernelRoutingTable:
    """
    A multicast routing table backed by the Linux kernel's multicast
    forwarding cache (MFC).

    The kernel only accepts MFC entries from the process holding the
    MRT_INIT socket, and drops all of them when that socket is closed, so
    installed routes live exactly as long as this object stays initialised.

    Each interface used by a route is registered as a virtual interface
    (VIF) keyed by its ifindex; VIFs are shared between routes and
    reference counted.
    """

    # Minimal subset of <uapi/linux/in.h> and <uapi/linux/mroute.h>.
    C_HEADER_CODE = """
        typedef unsigned short vifi_t;
        typedef unsigned int socklen_t;

        struct in_addr {
            unsigned int s_addr; // network byte order
        };

        #define MAXVIFS 32

        struct vifctl {
            vifi_t vifc_vifi;
            unsigned char vifc_flags;
            unsigned char vifc_threshold;
            unsigned int vifc_rate_limit;
            union {
                struct in_addr vifc_lcl_addr;
                int vifc_lcl_ifindex;
            };
            struct in_addr vifc_rmt_addr;
        };

        struct mfcctl {
            struct in_addr mfcc_origin;
            struct in_addr mfcc_mcastgrp;
            vifi_t mfcc_parent;
            unsigned char mfcc_ttls[MAXVIFS];
            // Compiler padding before the next 4-byte aligned field.
            char _padding[2];
            unsigned int mfcc_pkt_cnt;
            unsigned int mfcc_byte_cnt;
            unsigned int mfcc_wrong_if;
            int mfcc_expire;
        };

        int setsockopt(int sockfd, int level, int optname, const void *optval,
                       socklen_t optlen);
    """

    def __init__(self):
        self.ffi = FFI()
        self.ffi.cdef(self.C_HEADER_CODE)
        self.libc = self.ffi.dlopen("c")
        self.sock = None
        # Maps ifindex to {"vifi": ..., "name": ..., "ref_count": ...}
        self.vif_map = {}
        self.routes = []

    def _check_call(self, description, ret_code):
        if ret_code < 0:
            errno = self.ffi.errno
            raise OSError(errno, f"[{description}] {os.strerror(errno)}")

    def _setsockopt(self, description, optname, value, size):
        ret = self.libc.setsockopt(self.sock.fileno(), IPPROTO_IP, optname, value, size)
        self._check_call(description, ret)

    def mrt_init(self):
        """Opens the raw IGMP socket and takes ownership of multicast routing."""
        self.sock = socket.socket(socket.AF_INET, socket.SOCK_RAW, IPPROTO_IGMP)
        try:
            self._setsockopt(
                "MRT_INIT", MRT_INIT, self.ffi.new("int*", 1), self.ffi.sizeof("int")
            )
        except OSError:
            self.sock.close()
            self.sock = None
            raise
        logger.info("Kernel multicast routing initialised.")

    def mrt_done(self):
        """Releases multicast routing; the kernel drops every VIF and MFC entry."""
        if self.sock:
            try:
                self._setsockopt(
                    "MRT_DONE", MRT_DONE, self.ffi.new("int*", 1), self.ffi.sizeof("int")
                )
            finally:
                self.sock.close()
                self.sock = None
                self.vif_map.clear()
                logger.info("Kernel multicast routing released.")

    def __enter__(self):
        self.mrt_init()
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.mrt_done()

    def _find_next_vifi(self):
        used_vifis = {vif["vifi"] for vif in self.vif_map.values()}
        for vifi in range(MAXVIFS):
            if vifi not in used_vifis:
                return vifi
        raise RuntimeError(f"Maximum number of VIFs ({MAXVIFS}) reached.")

    def _add_vif(self, vifi, ifindex):
        vif_ctl = self.ffi.new("struct vifctl *")
        vif_ctl.vifc_vifi = vifi
        vif_ctl.vifc_flags = VIFF_USE_IFINDEX
        vif_ctl.vifc_lcl_ifindex = ifindex
        self._setsockopt(
            f"MRT_ADD_VIF for vifi {vifi}",
            MRT_ADD_VIF,
            vif_ctl,
            self.ffi.sizeof("struct vifctl"),
        )

    def _del_vif(self, vifi, ifindex):
        vif_ctl = self.ffi.new("struct vifctl *")
        vif_ctl.vifc_vifi = vifi
        vif_ctl.vifc_lcl_ifindex = ifindex
        self._setsockopt(
            f"MRT_DEL_VIF for vifi {vifi}",
            MRT_DEL_VIF,
            vif_ctl,
            self.ffi.sizeof("struct vifctl"),
        )

    def _acquire_vif(self, handle):
        """Returns the VIF index for an interface, registering it on first use."""
        if handle.id in self.vif_map:
            self.vif_map[handle.id]["ref_count"] += 1
            return self.vif_map[handle.id]["vifi"]

        vifi = self._find_next_vifi()
        self._add_vif(vifi=vifi, ifindex=handle.id)
        self.vif_map[handle.id] = {"vifi": vifi, "name": handle.name, "ref_count": 1}
        logger.debug("Registered %s (ifindex %d) as VIF %d", handle.name, handle.id, vifi)
        return vifi

    def _release_vif(self, handle):
        vif = self.vif_map.get(handle.id)
        if vif is None:
            return
        vif["ref_count"] -= 1
        if vif["ref_count"] <= 0:
            self._del_vif(vifi=vif["vifi"], ifindex=handle.id)
            del self.vif_map[handle.id]

    def _add_mfc(self, origin, group, parent_vifi, oif_vifis):
        mfc_ctl = self.ffi.new("struct mfcctl *")
        # s_addr holds the address bytes in network order in host memory.
        mfc_ctl.mfcc_origin.s_addr = int.from_bytes(origin.packed, sys.byteorder)
        mfc_ctl.mfcc_mcastgrp.s_addr = int.from_bytes(group.packed, sys.byteorder)
        mfc_ctl.mfcc_parent = parent_vifi
        # A TTL threshold of 1 on a VIF means "forward on this VIF".
        for vifi in oif_vifis:
            mfc_ctl.mfcc_ttls[vifi] = 1
        self._setsockopt(
            f"MRT_ADD_MFC for ({origin}, {group})",
            MRT_ADD_MFC,
            mfc_ctl,
            self.ffi.sizeof("struct mfcctl"),
        )

    def submit_multicast_route(self, route):
        """
        Programs one MFC entry for `route`. The origin mask has no kernel
        representation and is ignored.

        If the kernel rejects the entry, VIFs taken for it are released
        before the error propagates.
        """
        if route.input_interface is None:
            raise ValueError(
                "Kernel MFC entries need an input interface; "
                "a wildcard input cannot be installed."
            )
        if self.sock is None:
            raise RuntimeError("Kernel multicast routing is not initialised.")

        acquired = []
        try:
            parent_vifi = self._acquire_vif(route.input_interface)
            acquired.append(route.input_interface)
            oif_vifis = []
            for handle in route.output_interfaces:
                oif_vifis.append(self._acquire_vif(handle))
                acquired.append(handle)

            self._add_mfc(route.origin, route.group, parent_vifi, oif_vifis)
        except Exception:
            logger.warning("Rolling back VIF changes for (%s, %s).", route.origin, route.group)
            for handle in acquired:
                self._release_vif(handle)
            raise

        self.routes.append(route)

    def multicast_route_count(self):
        return len(self.routes)
