import pytest

from xdsclient.cluster_resources import DecodeError
from xdsclient.listener_resources import (
    Listener,
    ListenerFilter,
    ListenerFilterChain,
    TypedConfig,
)


def sample_listener():
    return Listener(
        name="test-listener",
        filter_chains=[
            ListenerFilterChain(
                name="test-lds-filter-chain",
                filters=[
                    ListenerFilter(
                        name="filter.append",
                        typed_config=TypedConfig("filter.append", {"value": "world"}),
                    ),
                    ListenerFilter(
                        name="MissingFilter",
                        typed_config=TypedConfig("MissingFilter", b""),
                    ),
                ],
            )
        ],
    )


def test_listener_round_trip_through_bytes():
    listener = sample_listener()
    assert Listener.decode(listener.encode()) == listener


def test_encoded_form_is_sorted_json():
    assert Listener(name="x").encode() == b'{"filter_chains": [], "name": "x"}'


def test_decode_of_message_returns_independent_copy():
    listener = sample_listener()
    decoded = Listener.decode(listener)
    assert decoded == listener
    decoded.filter_chains.clear()
    assert len(listener.filter_chains) == 1


def test_decode_from_mapping_fills_defaults():
    assert Listener.decode({"name": "l"}) == Listener(name="l", filter_chains=[])


def test_typed_config_bytes_round_trip():
    config = TypedConfig("some.type", b"\x00\xffabc")
    decoded = TypedConfig.decode(config.encode())
    assert decoded.value == b"\x00\xffabc"
    assert decoded.type_url == "some.type"


def test_typed_config_structured_round_trip():
    config = TypedConfig("some.type", {"value": "world", "n": [1, 2]})
    assert TypedConfig.decode(config.encode()) == config


def test_filter_with_both_configs_rejected():
    with pytest.raises(ValueError):
        ListenerFilter(
            name="f",
            typed_config=TypedConfig("t", b""),
            config_discovery={"source": "x"},
        )


def test_decoding_filter_with_both_configs_raises_decode_error():
    data = {
        "name": "f",
        "typed_config": {"type_url": "t"},
        "config_discovery": {"source": "x"},
    }
    with pytest.raises(DecodeError):
        ListenerFilter.decode(data)


def test_config_type_property():
    typed = TypedConfig("t", {"a": "b"})
    assert ListenerFilter(name="f", typed_config=typed).config_type is typed
    discovery = {"source": "x"}
    assert ListenerFilter(name="f", config_discovery=discovery).config_type == discovery
    assert ListenerFilter(name="f").config_type is None


def test_decode_invalid_bytes():
    with pytest.raises(DecodeError):
        Listener.decode(b"\xff\xfe not json")


def test_decode_wrong_field_type():
    with pytest.raises(DecodeError):
        Listener.decode({"name": 5})


def test_decode_filter_chains_must_be_objects():
    with pytest.raises(DecodeError):
        Listener.decode({"name": "l", "filter_chains": ["nope"]})


def test_typed_config_with_value_and_encoded_value_rejected():
    with pytest.raises(DecodeError):
        TypedConfig.decode({"type_url": "t", "value": 1, "value_base64": "AA=="})


def test_typed_config_invalid_base64_rejected():
    with pytest.raises(DecodeError):
        TypedConfig.decode({"type_url": "t", "value_base64": "!!!"})


def test_decode_non_mapping_rejected():
    with pytest.raises(DecodeError):
        Listener.decode(42)