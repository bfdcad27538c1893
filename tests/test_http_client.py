"""
HTTP Client Unit Tests

Tests for the shared, pooled HTTP client.
"""

from unittest.mock import patch

import pytest

from aves.core import http_client


class TestHttpClient:
    """Tests for the HTTP client module."""

    def test_get_http_client_returns_singleton(self):
        """Verify that get_http_client returns the same instance."""
        with patch("aves.core.http_client._http_client", None):
            client1 = http_client.get_http_client()
            client2 = http_client.get_http_client()

            assert client1 is client2

    def test_http_client_has_timeouts(self):
        with patch("aves.core.http_client._http_client", None):
            client = http_client.get_http_client()

            assert client.timeout.connect == http_client.CONNECT_TIMEOUT
            assert client.timeout.read == http_client.DEFAULT_TIMEOUT

    @pytest.mark.asyncio
    async def test_close_resets_client(self):
        with patch("aves.core.http_client._http_client", None):
            first = http_client.get_http_client()
            await http_client.close_http_client()

            assert first.is_closed
            assert http_client.get_http_client() is not first
            await http_client.close_http_client()
