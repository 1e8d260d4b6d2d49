"""Tests for email delivery."""

import smtplib
import tempfile
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from config.app_config import ReportConfig, SmtpConfig
from digest.senders import (
    DemoSender,
    SmtpSender,
    get_sender,
    send_email,
    validate_smtp_config,
)


def _smtp_config(port=587):
    return SmtpConfig(
        host="smtp.example.com",
        port=port,
        user="bot@example.com",
        password="secret",
        from_address="reports@example.com",
    )


def _mock_server(mock_smtp_cls):
    server = mock_smtp_cls.return_value
    server.__enter__.return_value = server
    return server


def test_no_recipients_returns_false():
    sender = MagicMock()
    assert send_email([], "Subject", "<p>x</p>", "x", sender=sender) is False
    sender.send.assert_not_called()


def test_missing_smtp_config_returns_false():
    assert send_email(["a@example.com"], "Subject", "<p>x</p>", "x", smtp_config=SmtpConfig()) is False


def test_validate_smtp_config_lists_missing_fields():
    result = validate_smtp_config(SmtpConfig(host="smtp.example.com"))
    assert result["valid"] is False
    assert "SMTP_USER not set" in result["errors"]
    assert "SMTP_PASS not set" in result["errors"]


def test_smtp_sender_rejects_incomplete_config():
    with pytest.raises(ValueError):
        SmtpSender(SmtpConfig(host="smtp.example.com"))


@patch("digest.senders.smtplib.SMTP")
def test_smtp_send_success(mock_smtp_cls):
    server = _mock_server(mock_smtp_cls)

    ok = send_email(
        ["a@example.com", "b@example.com"],
        "Weekly report",
        "<h1>Report</h1>",
        "# Report",
        smtp_config=_smtp_config(),
    )

    assert ok is True
    mock_smtp_cls.assert_called_once_with("smtp.example.com", 587, timeout=30)
    server.starttls.assert_called_once()
    server.login.assert_called_once_with("bot@example.com", "secret")
    from_address, to, payload = server.sendmail.call_args.args
    assert from_address == "reports@example.com"
    assert to == ["a@example.com", "b@example.com"]
    assert b"multipart/alternative" in payload
    assert b"Subject: Weekly report" in payload


@patch("digest.senders.smtplib.SMTP_SSL")
def test_port_465_uses_implicit_tls(mock_ssl_cls):
    server = _mock_server(mock_ssl_cls)

    assert send_email(["a@example.com"], "S", "<p>x</p>", "x", smtp_config=_smtp_config(port=465)) is True
    server.sendmail.assert_called_once()


@patch("digest.senders.smtplib.SMTP")
def test_smtp_exception_returns_false(mock_smtp_cls):
    server = _mock_server(mock_smtp_cls)
    server.sendmail.side_effect = smtplib.SMTPException("relay denied")

    assert send_email(["a@example.com"], "S", "<p>x</p>", "x", smtp_config=_smtp_config()) is False


@patch("digest.senders.smtplib.SMTP")
def test_smtp_auth_failure_returns_false(mock_smtp_cls):
    server = _mock_server(mock_smtp_cls)
    server.login.side_effect = smtplib.SMTPAuthenticationError(535, b"bad credentials")

    result = SmtpSender(_smtp_config()).send(["a@example.com"], "S", "<p>x</p>", "x")

    assert result["success"] is False
    assert "authentication" in result["message"]


@patch("digest.senders.smtplib.SMTP")
def test_connection_refused_returns_false(mock_smtp_cls):
    mock_smtp_cls.side_effect = ConnectionRefusedError("refused")

    assert send_email(["a@example.com"], "S", "<p>x</p>", "x", smtp_config=_smtp_config()) is False


def test_sender_failure_result_returns_false():
    sender = MagicMock()
    sender.send.return_value = {"success": False, "message": "nope", "details": {}}

    assert send_email(["a@example.com"], "S", "<p>x</p>", "x", sender=sender) is False


def test_demo_mode_writes_html_and_text():
    with tempfile.TemporaryDirectory() as tmpdir:
        output = Path(tmpdir) / "out" / "email.html"
        report_config = ReportConfig(send_mode="demo", demo_output_path=str(output))

        ok = send_email(
            ["a@example.com"],
            "Subject",
            "<h1>Report</h1>",
            "# Report\n\n**Bold**",
            report_config=report_config,
        )

        assert ok is True
        assert output.read_text(encoding="utf-8") == "<h1>Report</h1>"
        assert output.with_suffix(".txt").read_text(encoding="utf-8") == "REPORT\n\nBold\n"


def test_get_sender():
    assert isinstance(get_sender("demo"), DemoSender)
    assert isinstance(get_sender("smtp", smtp_config=_smtp_config()), SmtpSender)
    with pytest.raises(ValueError):
        get_sender("carrier-pigeon")
