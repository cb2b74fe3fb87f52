"""Tests for core.network port helpers."""
import pytest

from core.network import parse_docker_port_mapping, validate_port


@pytest.mark.parametrize(
    "value,expected",
    [(8080, 8080), ("8080", 8080), (" 443 ", 443), (1, 1), (65535, 65535), (8080.0, 8080)],
)
def test_validate_port_accepts(value, expected):
    assert validate_port(value) == expected


@pytest.mark.parametrize(
    "value", [0, -1, 65536, "http", "", None, 8080.5, True, [8080], {"port": 8080}]
)
def test_validate_port_rejects(value):
    assert validate_port(value) is None


def test_parse_published_port():
    ports = {"80/tcp": [{"HostIp": "0.0.0.0", "HostPort": "8080"}]}
    assert parse_docker_port_mapping(ports) == 8080


def test_parse_skips_unpublished_ports():
    ports = {"443/tcp": None, "80/tcp": [{"HostIp": "::", "HostPort": "8080"}]}
    assert parse_docker_port_mapping(ports) == 8080


def test_parse_binding_list():
    assert parse_docker_port_mapping([{"HostPort": "9090"}]) == 9090


@pytest.mark.parametrize(
    "ports",
    [None, {}, {"80/tcp": []}, {"80/tcp": [{"NoHostPort": "x"}]}, {"80/tcp": [{"HostPort": "99999"}]}],
)
def test_parse_without_host_port(ports):
    assert parse_docker_port_mapping(ports) is None
