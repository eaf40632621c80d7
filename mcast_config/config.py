# mcast_config/config.py
import configparser
import logging
import os

from .routes import RouteSpec
from .validation import RouteSpecValidator

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "/etc/mcast_config.conf"
DEFAULT_ROUTING_TABLE = "kernel"
DEFAULT_LOG_LEVEL = "INFO"
ROUTING_TABLES = ("kernel", "memory")

# INI option name -> RouteSpec field
ROUTE_OPTIONS = {
    "group_address": "group",
    "origin_address": "origin",
    "origin_netmask": "origin_mask",
    "in_interface": "in_interface",
    "out_interfaces": "out_interfaces",
    "discovery_prefix": "discovery_prefix",
}


def load_config(config_path=DEFAULT_CONFIG_PATH):
    """
    Loads configuration from the specified path.
    Returns a dictionary with the raw route fields and the tool settings.
    Missing or unreadable files fall back to the defaults.
    """
    config = configparser.ConfigParser()

    settings = {
        "route": {},
        "routing_table": DEFAULT_ROUTING_TABLE,
        "log_level": DEFAULT_LOG_LEVEL,
    }

    if os.path.exists(config_path):
        try:
            config.read(config_path)
            if "multicast" in config:
                section = config["multicast"]
                for option, field in ROUTE_OPTIONS.items():
                    if option in section:
                        settings["route"][field] = section.get(option).strip()
            if "configurator" in config:
                section = config["configurator"]
                settings["routing_table"] = section.get(
                    "routing_table", DEFAULT_ROUTING_TABLE
                ).strip()
                settings["log_level"] = section.get("log_level", DEFAULT_LOG_LEVEL).strip()
        except configparser.Error as e:
            logger.warning("Could not parse config file at %s: %s", config_path, e)
            settings["route"] = {}

    if settings["routing_table"] not in ROUTING_TABLES:
        logger.warning(
            "Unknown routing_table '%s', using '%s'.",
            settings["routing_table"],
            DEFAULT_ROUTING_TABLE,
        )
        settings["routing_table"] = DEFAULT_ROUTING_TABLE

    return settings


def load_route_spec(config_path=DEFAULT_CONFIG_PATH, overrides=None, settings=None):
    """
    Builds the RouteSpec for this host from the config file, with any
    non-None values in `overrides` taking precedence.
    Raises ValueError if the resulting specification is malformed.
    """
    if settings is None:
        settings = load_config(config_path)

    spec_data = dict(settings["route"])
    for field, value in (overrides or {}).items():
        if value is not None:
            spec_data[field] = value

    payload, error_message = RouteSpecValidator().validate(spec_data)
    if error_message:
        raise ValueError(error_message)
    return RouteSpec.from_dict(payload)
