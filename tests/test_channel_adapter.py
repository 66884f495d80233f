"""
Tests for the message channel adapters
"""
from unittest.mock import Mock

import pytest
import requests

from followup.channel_adapter import (
    MockChannelAdapter, WhatsAppGatewayAdapter, create_channel_adapter
)


def _response(payload=None, status_error=None, json_error=None):
    response = Mock()
    response.raise_for_status.side_effect = status_error
    if json_error:
        response.json.side_effect = json_error
    else:
        response.json.return_value = payload
    return response


class TestWhatsAppGatewayAdapter:
    """Tests for WhatsAppGatewayAdapter"""

    @pytest.fixture
    def session(self):
        return Mock(spec=requests.Session)

    @pytest.fixture
    def adapter(self, session):
        return WhatsAppGatewayAdapter(
            api_url="https://gateway.test/send", api_token="token-123", timeout=5, session=session
        )

    def test_requires_token(self, monkeypatch):
        monkeypatch.setattr("config.settings.WHATSAPP_API_TOKEN", "")
        with pytest.raises(ValueError):
            WhatsAppGatewayAdapter(api_token="")

    def test_send_success(self, adapter, session):
        session.post.return_value = _response({"status": True, "id": ["12345"]})

        result = adapter.send("081234567890", "Halo")

        assert result.success is True
        assert result.message_id == "12345"
        session.post.assert_called_once_with(
            "https://gateway.test/send",
            json={"target": "6281234567890", "message": "Halo"},
            headers={"Authorization": "token-123"},
            timeout=5,
        )

    def test_send_success_without_id(self, adapter, session):
        session.post.return_value = _response({"status": True})
        result = adapter.send("081234567890", "Halo")
        assert result.success is True
        assert result.message_id.startswith("wa_")

    def test_gateway_rejection(self, adapter, session):
        session.post.return_value = _response({"status": False, "reason": "target invalid"})

        result = adapter.send("081234567890", "Halo")

        assert result.success is False
        assert result.error == "target invalid"

    def test_http_error(self, adapter, session):
        session.post.return_value = _response(status_error=requests.HTTPError("500 Server Error"))

        result = adapter.send("081234567890", "Halo")

        assert result.success is False
        assert "500" in result.error

    def test_timeout(self, adapter, session):
        session.post.side_effect = requests.Timeout("timed out")
        result = adapter.send("081234567890", "Halo")
        assert result.success is False

    def test_invalid_json(self, adapter, session):
        session.post.return_value = _response(json_error=ValueError("no json"))
        result = adapter.send("081234567890", "Halo")
        assert result.success is False
        assert result.error == "Invalid gateway response"


class TestMockChannelAdapter:
    """Tests for MockChannelAdapter"""

    def test_records_messages(self, mock_channel):
        first = mock_channel.send("0812", "one")
        second = mock_channel.send("0813", "two")

        assert first.message_id == "mock-message-1"
        assert second.message_id == "mock-message-2"
        assert [m["body"] for m in mock_channel.messages_sent] == ["one", "two"]

    def test_failure_modes(self, mock_channel):
        mock_channel.should_fail = True
        mock_channel.failure_error = "blocked"
        assert mock_channel.send("0812", "x").error == "blocked"

        mock_channel.should_raise = True
        with pytest.raises(ConnectionError):
            mock_channel.send("0812", "x")

        mock_channel.reset()
        assert mock_channel.send("0812", "x").success


def test_factory_returns_mock():
    assert isinstance(create_channel_adapter(mock=True), MockChannelAdapter)
