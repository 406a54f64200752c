"""Tests for output formats: --json envelopes and error message quality."""

from __future__ import annotations

import json

from geoedit.cli.helpers import json_envelope, json_error_obj


# ---------------------------------------------------------------------------
# Envelope construction
# ---------------------------------------------------------------------------


def test_envelope_success_shape():
    parsed = json.loads(json_envelope(True, data={"b": 1, "a": "ä"}))
    assert parsed == {"ok": True, "data": {"a": "ä", "b": 1}}


def test_envelope_is_sorted_and_unescaped():
    text = json_envelope(True, data={"b": 1, "a": "ä"})
    assert text.index('"a"') < text.index('"b"')
    assert "ä" in text
    assert text.endswith("\n")


def test_envelope_error_shape():
    parsed = json.loads(json_envelope(False, error=json_error_obj("NOT_FOUND", "gone")))
    assert parsed == {"ok": False, "error": {"code": "NOT_FOUND", "message": "gone"}}


# ---------------------------------------------------------------------------
# JSON envelope: success (read commands)
# ---------------------------------------------------------------------------


def test_versions_json_envelope(invoke):
    result = invoke("versions", "--json")
    assert result.exit_code == 0
    data = json.loads(result.output)
    assert data["ok"] is True
    assert data["data"] == []


def test_current_json_envelope(invoke):
    result = invoke("current", "--json")
    assert result.exit_code == 0
    data = json.loads(result.output)
    assert data["ok"] is True
    assert data["data"] == {"type": "FeatureCollection", "features": []}


def test_audit_recent_json_envelope(invoke):
    result = invoke("audit", "recent", "--json")
    data = json.loads(result.output)
    assert data["ok"] is True
    assert data["data"] == {"entries": []}


def test_distance_json_envelope(invoke):
    result = invoke("distance", "23.7,37.95", "23.7,37.95", "--json")
    data = json.loads(result.output)
    assert data == {"ok": True, "data": {"meters": 0.0}}


# ---------------------------------------------------------------------------
# JSON envelope: errors
# ---------------------------------------------------------------------------


def test_invalid_argument_json_error(invoke):
    result = invoke("clusters", "--bbox", "a,b,c,d", "--zoom", "3", "--json")
    assert result.exit_code == 1
    data = json.loads(result.output)
    assert data["ok"] is False
    assert data["error"]["code"] == "INVALID_ARGUMENT"
    assert "a,b,c,d" in data["error"]["message"]


def test_validation_json_error(invoke, tmp_path):
    bad = tmp_path / "points.geojson"
    bad.write_text("[]")
    result = invoke("upload", str(bad), "--json")
    assert result.exit_code == 1
    data = json.loads(result.output)
    assert data["error"]["code"] == "VALIDATION_ERROR"


def test_json_error_has_no_data(invoke):
    result = invoke("distance", "1,2,3", "1,2", "--json")
    data = json.loads(result.output)
    assert "data" not in data


# ---------------------------------------------------------------------------
# Human errors
# ---------------------------------------------------------------------------


def test_human_error_prefixed(invoke):
    result = invoke("export", "no-such-version")
    assert result.exit_code == 1
    assert result.output.startswith("Error: ")


def test_bbox_error_names_expected_shape(invoke):
    result = invoke("clusters", "--bbox", "1,2", "--zoom", "3")
    assert result.exit_code == 1
    assert "Expected 4 comma-separated numbers" in result.output
