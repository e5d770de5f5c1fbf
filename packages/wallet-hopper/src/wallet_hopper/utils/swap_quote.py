import logging
from dataclasses import dataclass
from typing import Any

import httpx

from ..errors import QuoteUnavailable

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SwapQuote:
    """Ready-to-submit swap transaction returned by the aggregator.

    Attributes:
        tx: Transaction descriptor with 'from', 'to', 'data' and 'value'
        to_amount: Expected output in base units of the destination token
    """

    tx: dict[str, Any]
    to_amount: int


class SwapQuoteClient:
    """Client for the swap aggregator's /swap endpoint.

    Each request opens its own short-lived HTTP client. Any transport,
    status or payload problem is reported as QuoteUnavailable.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        slippage: float = 1.0,
        timeout: float = 30.0,
    ) -> None:
        """Initialize the quote client.

        Args:
            base_url: Aggregator API root (e.g. https://api.1inch.io/v5.2)
            api_key: Optional bearer token
            slippage: Slippage tolerance in percent
            timeout: HTTP timeout in seconds
        """
        self.base_url: str = base_url.rstrip('/')
        self.api_key: str | None = api_key
        self.slippage: float = slippage
        self.timeout: float = timeout

    def quote_url(self, chain_id: int) -> str:
        return f"{self.base_url}/{chain_id}/swap"

    def _headers(self) -> dict[str, str]:
        headers = {"accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def get_swap(
        self,
        quote_url: str,
        src: str,
        dst: str,
        amount: int,
        from_address: str,
    ) -> SwapQuote:
        """Request swap calldata from the aggregator.

        Args:
            quote_url: Chain-specific swap endpoint (see quote_url())
            src: Source token address (or native sentinel)
            dst: Destination token address
            amount: Amount of source token in base units
            from_address: Address that will submit the swap

        Returns:
            SwapQuote with the transaction to submit

        Raises:
            QuoteUnavailable: If the aggregator cannot be reached or returns
                an unusable response
        """
        params: dict[str, Any] = {
            "src": src,
            "dst": dst,
            "amount": str(amount),
            "from": from_address,
            "slippage": self.slippage,
            "disableEstimate": "false",
            "includeTokensInfo": "true",
            "includeProtocols": "true",
            "compatibility": "true",
            "allowPartialFill": "false",
        }

        logger.debug(f"Requesting swap quote from {quote_url}: {src} -> {dst}, amount={amount}")
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response: httpx.Response = await client.get(quote_url, params=params, headers=self._headers())
                response.raise_for_status()
                payload: dict[str, Any] = response.json()
        except httpx.HTTPStatusError as e:
            logger.error(f"Swap quote rejected with HTTP {e.response.status_code}: {e.response.text}")
            raise QuoteUnavailable(f"Aggregator returned HTTP {e.response.status_code}") from e
        except (httpx.RequestError, ValueError) as e:
            logger.error(f"Swap quote request failed: {e}")
            raise QuoteUnavailable("Aggregator unreachable or returned invalid JSON") from e

        return self._parse_quote(payload)

    def _parse_quote(self, payload: dict[str, Any]) -> SwapQuote:
        match payload:
            case {"tx": {"to": str(), "data": str()} as tx}:
                pass
            case _:
                raise QuoteUnavailable("Aggregator response is missing transaction data")

        # v5 names the output 'toAmount', later versions 'dstAmount'
        raw_amount = payload.get("toAmount", payload.get("dstAmount"))
        try:
            to_amount = int(raw_amount)
        except (TypeError, ValueError):
            raise QuoteUnavailable("Aggregator response is missing the output amount") from None

        return SwapQuote(
            tx={
                "from": tx.get("from"),
                "to": tx["to"],
                "data": tx["data"],
                "value": int(tx.get("value") or 0),
            },
            to_amount=to_amount,
        )
