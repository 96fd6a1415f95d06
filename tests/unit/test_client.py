"""Unit tests for the relay CLI client helpers."""

import json

import pytest

from overlay_relay.client import RelayClient, build_url, parse_assignments


def test_build_url_appends_token() -> None:
    assert build_url("ws://localhost:8080", "secret") == "ws://localhost:8080?token=secret"


def test_build_url_replaces_existing_token() -> None:
    url = build_url("ws://localhost:8080/?room=a&token=old", "new")
    assert url == "ws://localhost:8080/?room=a&token=new"


def test_build_url_without_token() -> None:
    assert build_url("ws://localhost:8080", None) == "ws://localhost:8080"


def test_parse_assignments_json_values() -> None:
    payload = parse_assignments(["count=3", "visible=true", 'tags=["a","b"]', "moon=selene"])
    assert payload == {"count": 3, "visible": True, "tags": ["a", "b"], "moon": "selene"}


def test_parse_assignments_value_may_contain_equals() -> None:
    assert parse_assignments(["expr=a=b"]) == {"expr": "a=b"}


@pytest.mark.parametrize("item", ["novalue", "=value"])
def test_parse_assignments_rejects_bad_items(item: str) -> None:
    with pytest.raises(ValueError, match="Expected key=value"):
        parse_assignments([item])


def test_handle_message_mirrors_state(capsys: pytest.CaptureFixture[str]) -> None:
    client = RelayClient("ws://localhost:8080", token="t")

    assert client.handle_message(json.dumps({"type": "config:init", "payload": {"a": 1}})) == (
        "config:init"
    )
    assert client.state == {"a": 1}

    client.handle_message(json.dumps({"type": "config", "payload": {"a": 2, "b": 3}}))
    assert client.state == {"a": 2, "b": 3}
    assert '"b": 3' in capsys.readouterr().out


def test_handle_message_ignores_garbage() -> None:
    client = RelayClient("ws://localhost:8080")
    assert client.handle_message("not json") is None
    assert client.state == {}
