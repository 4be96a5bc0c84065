"""Tests for the remote definition sources."""

import json

import httpx
import pytest
import yaml

from agentsync.errors import RemoteError
from agentsync.remote import FileDefinitionSource, ManageApiClient

DEFINITION = {"id": "support-desk", "name": "Support Desk"}


def _client(handler, api_key=None):
    return ManageApiClient(
        "https://manage.example.com/",
        tenant_id="acme",
        api_key=api_key,
        transport=httpx.MockTransport(handler),
    )


# --- Management API ---


def test_fetch_full_definition():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"data": DEFINITION})

    assert _client(handler, api_key="k").get_full_definition("support-desk") == DEFINITION
    assert str(seen[0].url) == (
        "https://manage.example.com/manage/tenants/acme/project-full/support-desk"
    )
    assert seen[0].headers["Authorization"] == "Bearer k"


def test_no_auth_header_without_key():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"data": DEFINITION})

    _client(handler).get_full_definition("support-desk")
    assert "Authorization" not in seen[0].headers


@pytest.mark.parametrize(
    "response, message",
    [
        (httpx.Response(404), "not found"),
        (httpx.Response(401), "Not authorized"),
        (httpx.Response(500), "HTTP 500"),
        (httpx.Response(200, text="<html>"), "invalid JSON"),
        (httpx.Response(200, json={"error": "nope"}), "no 'data' object"),
        (httpx.Response(200, json=[1, 2]), "no 'data' object"),
    ],
)
def test_fetch_errors(response, message):
    with pytest.raises(RemoteError, match=message):
        _client(lambda request: response).get_full_definition("support-desk")


def test_connection_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(RemoteError, match="Failed to reach"):
        _client(handler).get_full_definition("support-desk")


# --- File source ---


def test_file_source_json_and_envelope(tmp_path):
    plain = tmp_path / "plain.json"
    plain.write_text(json.dumps(DEFINITION))
    assert FileDefinitionSource(plain).get_full_definition("support-desk") == DEFINITION

    envelope = tmp_path / "envelope.json"
    envelope.write_text(json.dumps({"data": DEFINITION}))
    assert FileDefinitionSource(envelope).get_full_definition("support-desk") == DEFINITION


def test_file_source_yaml(tmp_path):
    path = tmp_path / "definition.yaml"
    path.write_text(yaml.safe_dump(DEFINITION))
    assert FileDefinitionSource(path).get_full_definition("support-desk") == DEFINITION


def test_file_source_errors(tmp_path):
    with pytest.raises(RemoteError, match="not found"):
        FileDefinitionSource(tmp_path / "missing.json").get_full_definition("support-desk")

    broken = tmp_path / "broken.json"
    broken.write_text("{")
    with pytest.raises(RemoteError, match="Cannot parse"):
        FileDefinitionSource(broken).get_full_definition("support-desk")

    listing = tmp_path / "list.json"
    listing.write_text("[]")
    with pytest.raises(RemoteError, match="does not contain"):
        FileDefinitionSource(listing).get_full_definition("support-desk")

    other = tmp_path / "other.json"
    other.write_text(json.dumps({"id": "other", "name": "Other"}))
    with pytest.raises(RemoteError, match="holds project 'other'"):
        FileDefinitionSource(other).get_full_definition("support-desk")
