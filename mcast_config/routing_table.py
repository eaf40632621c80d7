# mcast_config/routing_table.py


class MulticastRoutingTable:
    """
    An in-memory multicast routing table.

    Routes are kept in submission order and never merged, so submitting the
    same route twice leaves two entries.
    """

    def __init__(self):
        self.routes = []

    def submit_multicast_route(self, route):
        self.routes.append(route)

    def multicast_route_count(self):
        return len(self.routes)
