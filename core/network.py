# core/network.py
from typing import Any, Optional


def validate_port(value: Any) -> Optional[int]:
    """Return ``value`` as a TCP port number, or None if it is not one."""
    if isinstance(value, bool):
        return None
    if isinstance(value, float):
        if not value.is_integer():
            return None
        value = int(value)
    if isinstance(value, str):
        value = value.strip()
        if not value.isdigit():
            return None
        value = int(value)
    if not isinstance(value, int):
        return None
    if 1 <= value <= 65535:
        return value
    return None


def parse_docker_port_mapping(ports: Any) -> Optional[int]:
    """Extract the first published host port from a container's ``ports`` attribute.

    Docker reports ``{"80/tcp": [{"HostIp": "0.0.0.0", "HostPort": "8080"}]}``;
    unpublished ports map to None or an empty list.
    """
    if isinstance(ports, dict):
        for bindings in ports.values():
            port = parse_docker_port_mapping(bindings)
            if port is not None:
                return port
        return None
    if isinstance(ports, list):
        for binding in ports:
            if isinstance(binding, dict):
                port = validate_port(binding.get("HostPort"))
            else:
                port = validate_port(binding)
            if port is not None:
                return port
        return None
    return validate_port(ports)
