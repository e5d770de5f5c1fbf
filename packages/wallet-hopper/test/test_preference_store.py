#!/usr/bin/env python3
"""Tests for PreferenceStoreClient.

Covers preference lookups (including the payloads treated as "nothing
published") and document storage against a mocked httpx client.
"""

import json
import unittest
from unittest.mock import AsyncMock, MagicMock, patch

import httpx

from src.wallet_hopper.errors import StorageUnavailable
from src.wallet_hopper.models import PreferenceDocument, PreferredAsset
from src.wallet_hopper.preference_store import PreferenceStoreClient

RECIPIENT = "0x742D35Cc6634C0532925A3B844bC9e7595f0bEB7"
LOOKUP_URL = "http://localhost:3000/api/wallet-meta"
STORAGE_URL = "http://localhost:3000/api/store"


def make_document() -> PreferenceDocument:
    return PreferenceDocument(
        timestamp="2024-05-01T12:00:00.000Z",
        primary_address=RECIPIENT,
        primary_chain="polygon",
        preferred_assets=(PreferredAsset(chain="polygon", symbol="USDC", address=RECIPIENT),),
        addresses=(RECIPIENT,),
    )


def make_response(body=None, status_code=200, content=b"{}"):
    response = MagicMock()
    response.status_code = status_code
    response.content = content
    response.json = MagicMock(return_value=body)
    response.raise_for_status = MagicMock()
    return response


class TestPreferenceStoreFetch(unittest.IsolatedAsyncioTestCase):
    """Test cases for PreferenceStoreClient.fetch."""

    def setUp(self):
        """Set up test fixtures."""
        self.client = PreferenceStoreClient(LOOKUP_URL, STORAGE_URL, timeout=5)

    def _install(self, mock_client_class, response):
        mock_client = AsyncMock()
        mock_client.get = AsyncMock(return_value=response)
        mock_client_class.return_value.__aenter__.return_value = mock_client
        return mock_client

    @patch('src.wallet_hopper.preference_store.httpx.AsyncClient')
    async def test_fetch_document(self, mock_client_class):
        """Test fetching a published document."""
        body = {"data": json.dumps(make_document().to_dict())}
        mock_client = self._install(mock_client_class, make_response(body))

        document = await self.client.fetch(RECIPIENT, blockchain="polygon", token_address="0xabc")

        assert document == make_document()
        mock_client.get.assert_called_once_with(
            LOOKUP_URL,
            params={"userAddress": RECIPIENT, "blockchain": "polygon", "tokenAddress": "0xabc"},
        )
        mock_client_class.assert_called_once_with(timeout=5)

    @patch('src.wallet_hopper.preference_store.httpx.AsyncClient')
    async def test_missing_timestamp_is_not_found(self, mock_client_class):
        """Test that a payload lacking a timestamp counts as unpublished."""
        payload = make_document().to_dict()
        del payload["timestamp"]
        self._install(mock_client_class, make_response({"data": json.dumps(payload)}))

        assert await self.client.fetch(RECIPIENT) is None

    @patch('src.wallet_hopper.preference_store.httpx.AsyncClient')
    async def test_not_found(self, mock_client_class):
        """Test that HTTP 404 means nothing is published."""
        response = make_response(status_code=404)
        self._install(mock_client_class, response)

        assert await self.client.fetch(RECIPIENT) is None
        response.raise_for_status.assert_not_called()

    @patch('src.wallet_hopper.preference_store.httpx.AsyncClient')
    async def test_empty_body(self, mock_client_class):
        """Test that an empty response body means nothing is published."""
        self._install(mock_client_class, make_response(content=b""))

        assert await self.client.fetch(RECIPIENT) is None

    @patch('src.wallet_hopper.preference_store.httpx.AsyncClient')
    async def test_undecodable_data(self, mock_client_class):
        """Test that a non-JSON data field means nothing is published."""
        self._install(mock_client_class, make_response({"data": "not json"}))

        assert await self.client.fetch(RECIPIENT) is None

    @patch('src.wallet_hopper.preference_store.httpx.AsyncClient')
    async def test_malformed_document(self, mock_client_class):
        """Test that a timestamped but malformed document is ignored."""
        payload = {"timestamp": "2024-05-01T12:00:00.000Z", "preferredAssets": "USDC"}
        self._install(mock_client_class, make_response({"data": json.dumps(payload)}))

        assert await self.client.fetch(RECIPIENT) is None

    @patch('src.wallet_hopper.preference_store.httpx.AsyncClient')
    async def test_server_error(self, mock_client_class):
        """Test that a 5xx response raises StorageUnavailable."""
        response = make_response(status_code=500)
        response.raise_for_status = MagicMock(side_effect=httpx.HTTPStatusError(
            "Server error", request=MagicMock(), response=MagicMock(status_code=500)
        ))
        self._install(mock_client_class, response)

        with self.assertRaises(StorageUnavailable):
            await self.client.fetch(RECIPIENT)

    @patch('src.wallet_hopper.preference_store.httpx.AsyncClient')
    async def test_connection_error(self, mock_client_class):
        """Test that a transport failure raises StorageUnavailable."""
        mock_client = AsyncMock()
        mock_client.get = AsyncMock(side_effect=httpx.ConnectError("refused"))
        mock_client_class.return_value.__aenter__.return_value = mock_client

        with self.assertRaises(StorageUnavailable) as ctx:
            await self.client.fetch(RECIPIENT)
        assert isinstance(ctx.exception.__cause__, httpx.ConnectError)


class TestPreferenceStorePublish(unittest.IsolatedAsyncioTestCase):
    """Test cases for PreferenceStoreClient.publish."""

    def setUp(self):
        """Set up test fixtures."""
        self.client = PreferenceStoreClient(LOOKUP_URL, STORAGE_URL)

    @patch('src.wallet_hopper.preference_store.httpx.AsyncClient')
    async def test_publish(self, mock_client_class):
        """Test storing a document returns its content handle."""
        mock_client = AsyncMock()
        mock_client.post = AsyncMock(return_value=make_response({"cid": "bafy123"}))
        mock_client_class.return_value.__aenter__.return_value = mock_client
        document = make_document()

        handle = await self.client.publish(document)

        assert handle.cid == "bafy123"
        assert handle.locator == "ipfs:bafy123"
        url, = mock_client.post.call_args.args
        sent = mock_client.post.call_args.kwargs["json"]
        assert url == STORAGE_URL
        assert json.loads(sent["data"]) == document.to_dict()

    @patch('src.wallet_hopper.preference_store.httpx.AsyncClient')
    async def test_publish_missing_cid(self, mock_client_class):
        """Test that a response without a cid raises StorageUnavailable."""
        mock_client = AsyncMock()
        mock_client.post = AsyncMock(return_value=make_response({"ok": True}))
        mock_client_class.return_value.__aenter__.return_value = mock_client

        with self.assertRaises(StorageUnavailable):
            await self.client.publish(make_document())

    @patch('src.wallet_hopper.preference_store.httpx.AsyncClient')
    async def test_publish_unreachable(self, mock_client_class):
        """Test that a transport failure raises StorageUnavailable."""
        mock_client = AsyncMock()
        mock_client.post = AsyncMock(side_effect=httpx.ReadTimeout("timed out"))
        mock_client_class.return_value.__aenter__.return_value = mock_client

        with self.assertRaises(StorageUnavailable):
            await self.client.publish(make_document())
