"""
This module defines the JSON schema for validating a route specification
before it is turned into a RouteSpec.
"""

from jsonschema import ValidationError, validate

# Addresses are checked when the route is installed, so that a bad address
# surfaces as InvalidAddress; here only the shape of the section is checked.
route_spec_schema = {
    "type": "object",
    "properties": {
        "group": {"type": "string"},
        "origin": {"type": "string", "minLength": 1},
        "origin_mask": {"type": "string", "minLength": 1},
        "in_interface": {"type": "string"},
        "out_interfaces": {"type": "string"},
        "discovery_prefix": {"type": "string", "minLength": 1},
    },
    "additionalProperties": False,
}


class RouteSpecValidator:
    """A validator for route specifications read from configuration."""

    def validate(self, spec_data):
        """
        Validates a route specification dict against the schema.

        Args:
            spec_data (dict): Route fields keyed by RouteSpec field name.

        Returns:
            tuple(dict, str|None): A tuple of (validated_payload, error_message).
                                   If validation fails, payload is None.
        """
        try:
            validate(instance=spec_data, schema=route_spec_schema)
            return spec_data, None
        except ValidationError as e:
            return None, f"Invalid route specification: {e.message}"
