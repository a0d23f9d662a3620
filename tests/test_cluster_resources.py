import pytest

from xdsclient.cluster_resources import (
    Cluster,
    ClusterLoadAssignment,
    DecodeError,
    DiscoveryType,
    EnvoyEndpoint,
    LbEndpoint,
    Locality,
    LocalityLbEndpoints,
    SocketAddress,
)


def _endpoint(address="127.0.0.1", port=2020):
    return EnvoyEndpoint(
        address=SocketAddress(protocol=1, address=address, ipv4_compat=True, port_value=port)
    )


def _assignment(name="a"):
    return ClusterLoadAssignment(
        cluster_name=name,
        endpoints=[
            LocalityLbEndpoints(
                locality=Locality(region="r", zone="z", sub_zone="s"),
                lb_endpoints=[
                    LbEndpoint(
                        endpoint=_endpoint(),
                        metadata={"key-a": {"one": "two"}},
                    ),
                    LbEndpoint(endpoint_name="named"),
                ],
            )
        ],
        named_endpoints={"named": _endpoint("127.0.0.9", 4040)},
    )


def _cluster(name="a"):
    return Cluster(
        name=name,
        discovery_type=DiscoveryType.STATIC,
        load_assignment=_assignment(name),
    )


def test_socket_address_dict_form():
    addr = SocketAddress(protocol=1, address="127.0.0.1", ipv4_compat=True, port_value=2020)
    assert addr.to_dict() == {
        "protocol": 1,
        "address": "127.0.0.1",
        "resolver_name": "",
        "ipv4_compat": True,
        "port_value": 2020,
    }


def test_socket_address_rejects_both_ports():
    with pytest.raises(ValueError):
        SocketAddress(address="127.0.0.1", port_value=1, named_port="x")


def test_named_port_round_trip():
    addr = SocketAddress(address="127.0.0.1", named_port="not_supported")
    decoded = SocketAddress.decode(addr.encode())
    assert decoded == addr
    assert decoded.port_value is None
    assert decoded.named_port == "not_supported"


def test_cluster_round_trip_through_bytes():
    cluster = _cluster()
    assert Cluster.decode(cluster.encode()) == cluster


def test_assignment_round_trip_through_mapping():
    assignment = _assignment("b")
    assert ClusterLoadAssignment.decode(assignment.to_dict()) == assignment


def test_decode_instance_returns_independent_copy():
    assignment = _assignment()
    decoded = ClusterLoadAssignment.decode(assignment)
    assert decoded == assignment
    decoded.named_endpoints.pop("named")
    assert "named" in assignment.named_endpoints


def test_decode_invalid_bytes():
    with pytest.raises(DecodeError):
        Cluster.decode(b"\xff\x00garbage")


def test_decode_wrong_kind_of_value():
    with pytest.raises(DecodeError):
        Cluster.decode(42)


def test_decode_wrong_field_type():
    with pytest.raises(DecodeError):
        Cluster.decode({"name": 5})


def test_decode_rejects_bool_for_int_field():
    with pytest.raises(DecodeError):
        Cluster.decode({"name": "a", "type": True})


def test_decode_conflicting_host_identifier():
    data = {"endpoint": _endpoint().to_dict(), "endpoint_name": "x"}
    with pytest.raises(DecodeError):
        LbEndpoint.decode(data)


def test_cluster_rejects_both_discovery_kinds():
    with pytest.raises(ValueError):
        Cluster(name="a", discovery_type=0, custom_cluster_type={"name": "custom"})


def test_cluster_without_discovery_type_round_trip():
    cluster = Cluster(name="c", load_assignment=_assignment("c"))
    decoded = Cluster.decode(cluster.encode())
    assert decoded.discovery_type is None
    assert decoded.custom_cluster_type is None
    assert decoded == cluster


def test_custom_cluster_type_round_trip():
    cluster = Cluster(name="c", custom_cluster_type={"name": "custom"})
    decoded = Cluster.decode(cluster.to_dict())
    assert decoded.custom_cluster_type == {"name": "custom"}
    assert decoded.discovery_type is None


def test_host_identifier():
    inline = LbEndpoint(endpoint=_endpoint())
    named = LbEndpoint(endpoint_name="named")
    empty = LbEndpoint()
    assert inline.host_identifier == _endpoint()
    assert named.host_identifier == "named"
    assert empty.host_identifier is None


def test_locality_is_hashable_key():
    first = Locality(region="r", zone="z", sub_zone="s")
    second = Locality.decode(first.encode())
    table = {first: 1, None: 2}
    assert table[second] == 1
    assert table[None] == 2


def test_metadata_survives_round_trip():
    endpoint = LbEndpoint(endpoint=_endpoint(), metadata={"key-a": {"one": "two"}})
    decoded = LbEndpoint.decode(endpoint.encode())
    assert decoded.metadata == {"key-a": {"one": "two"}}


def test_static_discovery_type_encodes_as_zero():
    encoded = _cluster().to_dict()
    assert encoded["type"] == DiscoveryType.STATIC
    assert Cluster.decode(encoded).discovery_type == 0