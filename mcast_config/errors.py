# mcast_config/errors.py
"""
Exceptions raised when a multicast route cannot be installed on a host.

Every one of them aborts installation for that host only; nothing has been
submitted to the routing table when they are raised.
"""

INPUT = "input"
OUTPUT = "output"


class InstallError(Exception):
    """Base class for all route installation failures."""


class InvalidAddress(InstallError):
    """A group, origin or origin mask is not a dotted-decimal IPv4 address."""

    def __init__(self, field, value):
        self.field = field
        self.value = value
        super().__init__(f"Invalid {field} address: '{value}'")


class InterfaceNotFound(InstallError):
    """A named input or output interface is absent from the inventory."""

    def __init__(self, name, role):
        self.name = name
        self.role = role
        super().__init__(f"{role.capitalize()} interface '{name}' not found.")


class InterfaceRoleConflict(InstallError):
    """The same interface was named as both input and output."""

    def __init__(self, name):
        self.name = name
        super().__init__(
            f"Interface '{name}' is configured as both input and output."
        )


class MissingTableDependency(InstallError):
    """The interface inventory or routing table was not provided."""

    def __init__(self, what):
        self.what = what
        super().__init__(f"Required {what} is not available.")
