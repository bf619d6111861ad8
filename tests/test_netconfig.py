import ipaddress

import pytest

from limaconf.netconfig import (
    MODE_USER_V2,
    Network,
    NetworkNotDefinedError,
    NetworksConfig,
    NetworksConfigError,
    config_file,
    default_config,
    fill_defaults,
    load_config,
)


def test_fill_default_empty():
    new = fill_defaults(NetworksConfig())
    user_net = new.networks[MODE_USER_V2]
    assert user_net.mode == MODE_USER_V2
    assert user_net.interface == ""
    assert user_net.netmask == ipaddress.ip_address("255.255.255.0")
    assert user_net.gateway == ipaddress.ip_address("192.168.104.1")
    assert user_net.dhcp_end is None


def test_fill_default_with_v2():
    config = NetworksConfig(networks={"user-v2": Network(mode=MODE_USER_V2)})
    user_net = fill_defaults(config).networks[MODE_USER_V2]
    assert user_net.mode == MODE_USER_V2
    assert user_net.interface == ""
    assert user_net.netmask == ipaddress.ip_address("255.255.255.0")
    assert user_net.gateway == ipaddress.ip_address("192.168.104.1")
    assert user_net.dhcp_end is None


def test_fill_default_with_v2_and_gateway():
    config = NetworksConfig(
        networks={
            "user-v2": Network(mode=MODE_USER_V2, gateway=ipaddress.ip_address("192.168.105.1"))
        }
    )
    user_net = fill_defaults(config).networks[MODE_USER_V2]
    assert user_net.mode == MODE_USER_V2
    assert user_net.interface == ""
    assert user_net.netmask is None
    assert user_net.gateway == ipaddress.ip_address("192.168.105.1")
    assert user_net.dhcp_end is None


def test_fill_defaults_does_not_mutate_input():
    config = NetworksConfig()
    fill_defaults(config)
    assert config.networks == {}


def test_check_defined_networks():
    config = default_config()
    for name in ("bridged", "shared", "host"):
        assert config.check(name) is None
    with pytest.raises(NetworkNotDefinedError, match="not defined"):
        config.check("unknown")


def test_is_usernet():
    config = default_config()
    assert config.is_usernet("user-v2") is True
    assert config.is_usernet("shared") is False
    with pytest.raises(NetworkNotDefinedError):
        config.is_usernet("missing")


def test_from_dict_rejects_unknown_field():
    with pytest.raises(NetworksConfigError, match="bogus"):
        NetworksConfig.from_dict({"paths": {}, "bogus": 1})


def test_from_dict_rejects_bad_ip():
    with pytest.raises(NetworksConfigError):
        NetworksConfig.from_dict({"networks": {"x": {"mode": "host", "gateway": "not-an-ip"}}})


def test_dict_round_trip():
    config = default_config()
    assert NetworksConfig.from_dict(config.to_dict()) == config


def test_config_file(tmp_path):
    assert config_file(tmp_path) == tmp_path / "networks.yaml"


def test_load_config_creates_default(tmp_path):
    path = tmp_path / "_config" / "networks.yaml"
    config = load_config(path)
    assert path.exists()
    assert config.group == "everyone"
    assert config.networks["shared"].gateway == ipaddress.ip_address("192.168.105.1")
    assert config.networks["bridged"].interface == "en0"


def test_load_config_adds_usernet(tmp_path):
    path = tmp_path / "networks.yaml"
    path.write_text("group: staff\nnetworks:\n  shared:\n    mode: shared\n")
    config = load_config(path)
    assert config.group == "staff"
    assert config.networks["user-v2"].gateway == ipaddress.ip_address("192.168.104.1")


def test_load_config_strict(tmp_path):
    path = tmp_path / "networks.yaml"
    path.write_text("unknownField: 1\n")
    with pytest.raises(NetworksConfigError, match="cannot parse"):
        load_config(path)