#!/usr/bin/env python3
"""Client for the preference lookup and durable storage services.

Reads a recipient's published preference document and persists new
documents to content-addressed storage. Recording the returned locator
on-chain is the caller's job.
"""

import json
import logging
from typing import Any

import httpx

from .errors import InvalidDocument, StorageUnavailable
from .models import ContentHandle, PreferenceDocument

# Get logger for this module
logger = logging.getLogger(__name__)


class PreferenceStoreClient:
    """Fetches and publishes recipient preference documents."""

    def __init__(self, lookup_url: str, storage_url: str, timeout: float = 30.0) -> None:
        """Initialize the client.

        Args:
            lookup_url: Preference lookup endpoint (HTTP GET)
            storage_url: Durable storage endpoint (HTTP POST)
            timeout: HTTP timeout in seconds
        """
        self.lookup_url: str = lookup_url
        self.storage_url: str = storage_url
        self.timeout: float = timeout

    async def fetch(
        self,
        address: str,
        blockchain: str | None = None,
        token_address: str | None = None,
    ) -> PreferenceDocument | None:
        """Fetch the preference document bound to ``address``.

        Args:
            address: Recipient address
            blockchain: Optional chain name hint for the lookup service
            token_address: Optional pointer registry address hint

        Returns:
            The document, or None if nothing usable is published

        Raises:
            StorageUnavailable: If the lookup service cannot be reached
        """
        params: dict[str, str] = {"userAddress": address}
        if blockchain:
            params["blockchain"] = blockchain
        if token_address:
            params["tokenAddress"] = token_address

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response: httpx.Response = await client.get(self.lookup_url, params=params)
                if response.status_code == 404:
                    logger.info(f"No preferences published for {address}")
                    return None
                response.raise_for_status()
                body: Any = response.json() if response.content else None
        except httpx.HTTPStatusError as e:
            logger.error(f"Preference lookup failed with HTTP {e.response.status_code}")
            raise StorageUnavailable(f"Preference lookup returned HTTP {e.response.status_code}") from e
        except httpx.RequestError as e:
            logger.error(f"Preference lookup request failed: {e}")
            raise StorageUnavailable("Preference lookup service unreachable") from e
        except ValueError as e:
            logger.warning(f"Preference lookup returned a non-JSON body for {address}: {e}")
            return None

        return self._decode_document(address, body)

    def _decode_document(self, address: str, body: Any) -> PreferenceDocument | None:
        """Decode the ``{data: "<json>"}`` envelope; anything without a timestamp is absent."""
        if not isinstance(body, dict) or not isinstance(body.get("data"), str):
            logger.info(f"No preference payload for {address}")
            return None

        try:
            payload = json.loads(body["data"])
        except json.JSONDecodeError:
            logger.warning(f"Preference payload for {address} is not valid JSON")
            return None

        if not isinstance(payload, dict) or not payload.get("timestamp"):
            logger.info(f"Preference payload for {address} has no timestamp; treating as unpublished")
            return None

        try:
            document = PreferenceDocument.from_dict(payload)
        except InvalidDocument as e:
            logger.warning(f"Ignoring malformed preference document for {address}: {e}")
            return None

        logger.debug(
            f"Fetched preferences for {address}: "
            f"{len(document.preferred_assets)} preferred asset(s), timestamp {document.timestamp}"
        )
        return document

    async def publish(self, document: PreferenceDocument) -> ContentHandle:
        """Persist a document to durable storage.

        Args:
            document: Document to store

        Returns:
            ContentHandle whose locator must be recorded on-chain

        Raises:
            StorageUnavailable: If the storage service fails or returns no CID
        """
        payload: dict[str, str] = {"data": json.dumps(document.to_dict(), indent=2)}

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response: httpx.Response = await client.post(self.storage_url, json=payload)
                response.raise_for_status()
                body: Any = response.json()
        except httpx.HTTPStatusError as e:
            logger.error(f"Storage service failed with HTTP {e.response.status_code}")
            raise StorageUnavailable(f"Storage service returned HTTP {e.response.status_code}") from e
        except httpx.RequestError as e:
            logger.error(f"Storage request failed: {e}")
            raise StorageUnavailable("Storage service unreachable") from e
        except ValueError as e:
            raise StorageUnavailable("Storage service returned invalid JSON") from e

        match body:
            case {"cid": str(cid)} if cid:
                logger.info(f"✓ Stored preference document: {cid}")
                return ContentHandle(cid=cid)
            case _:
                raise StorageUnavailable("Storage service response is missing 'cid'")
