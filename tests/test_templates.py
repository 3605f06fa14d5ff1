from __future__ import annotations

import pytest

from jenkins_inventory.inventory.schema import NodeReading
from jenkins_inventory.issues.templates import (
    ALERT_DISK,
    ALERT_OFFLINE,
    correlation_marker,
    disk_title,
    node_url,
    offline_title,
    parse_correlation_marker,
    render_disk_alert_body,
    title_for,
)


def test_title_templates() -> None:
    assert offline_title("n1") == "n1 is DOWN"
    assert disk_title("n1") == "n1 has low disk space"
    assert title_for(ALERT_DISK, "n1") == "n1 has low disk space"
    with pytest.raises(ValueError):
        title_for("cpu", "n1")


@pytest.mark.parametrize("key", ["n1", "mac--mini;01", "Built-In Node", "agent/ä"])
def test_correlation_marker_is_recovered_from_body(key: str) -> None:
    marker = correlation_marker(key, ALERT_OFFLINE)
    assert "--" not in marker[4:-3]
    body = f"Some text\n\n{marker}\n"
    assert parse_correlation_marker(body) == (key, ALERT_OFFLINE)


def test_parse_correlation_marker_ignores_foreign_bodies() -> None:
    assert parse_correlation_marker(None) is None
    assert parse_correlation_marker("plain issue") is None
    assert parse_correlation_marker("<!-- jenkins-inventory:node=n1;alert=cpu -->") is None


def test_disk_body_mentions_usage_and_carries_marker() -> None:
    body = render_disk_alert_body(
        "n1",
        {"name": "n1", "diskUsage": 93},
        "ci.example.org",
        NodeReading(free_bytes=7 * 1024**3, total_bytes=100 * 1024**3),
    )
    assert "93%" in body
    assert "7.0 GiB of 100.0 GiB" in body
    assert parse_correlation_marker(body) == ("n1", ALERT_DISK)


def test_disk_body_without_reading_omits_sizes() -> None:
    body = render_disk_alert_body("n1", {"name": "n1", "diskUsage": 93}, "ci.example.org")
    assert "93%" in body
    assert "Free:" not in body


def test_node_url_accepts_scheme_and_quotes_name() -> None:
    assert node_url("http://jenkins.local/", "Built-In Node") == "http://jenkins.local/computer/Built-In%20Node/"
