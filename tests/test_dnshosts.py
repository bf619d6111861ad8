import ipaddress

import pytest

from limaconf.dnshosts import Record, Zone, extract_zones, host_ip, record_name, zone_name

HOSTS_FOR_IP = {
    "sample": "1.1.1.1",
    "another.sample": "1.2.2.1",
    "google.com": "8.8.8.8",
    "google.ae": "google.com",
    "google.ie": "google.ae",
}


@pytest.mark.parametrize(
    "host, want",
    [
        ("sample", "1.1.1.1"),
        ("another.sample", "1.2.2.1"),
        ("google.com", "8.8.8.8"),
        ("google.ae", "8.8.8.8"),
        ("google.ie", "8.8.8.8"),
        ("google.sample", None),
    ],
)
def test_host_ip(host, want):
    expected = ipaddress.ip_address(want) if want else None
    assert host_ip(HOSTS_FOR_IP, host) == expected


def test_host_ip_alias_cycle_resolves_to_none():
    assert host_ip({"a": "b", "b": "a"}, "a") is None


@pytest.mark.parametrize(
    "host, name, rec",
    [
        ("", "", ""),
        ("sample", "sample", ""),
        ("another.sample", "sample.", "another"),
        ("another.sample.com", "com.", "another.sample"),
        ("a.c", "c.", "a"),
        ("a.b.c.d", "d.", "a.b.c"),
    ],
)
def test_zone_host(host, name, rec):
    assert zone_name(host) == name
    assert record_name(host) == rec


def test_extract_zones():
    hosts = {
        "google.com": "8.8.4.4",
        "local.google.com": "8.8.8.8",
        "google.ae": "google.com",
        "localhost": "127.0.0.1",
        "host.lima.internal": "192.168.5.2",
        "host.docker.internal": "host.lima.internal",
    }
    ip = ipaddress.ip_address
    want = [
        Zone(name="ae.", records=[Record("google", ip("8.8.4.4"))]),
        Zone(
            name="com.",
            records=[Record("google", ip("8.8.4.4")), Record("local.google", ip("8.8.8.8"))],
        ),
        Zone(
            name="internal.",
            records=[Record("host.docker", ip("192.168.5.2")), Record("host.lima", ip("192.168.5.2"))],
        ),
        Zone(name="localhost", default_ip=ip("127.0.0.1")),
    ]
    got = extract_zones(hosts)
    for zone in got:
        zone.records.sort(key=lambda r: r.name)
    got.sort(key=lambda z: z.name)
    assert got == want


def test_extract_zones_empty():
    assert extract_zones({}) == []