"""
HTTP client for a TruthStamp ledger relay.

Endpoints (JSON):
  POST /stamps                      {fingerprint, signature, metadata} → {handle}
  GET  /operations/{handle}         → {status: "pending" | "included" | "failed", error?}
  GET  /stamps/{fingerprint}        → {exists, creator, timestamp, metadata}
  GET  /creators/{address}/stamps   → {fingerprints: [...]}
  GET  /stamps/count                → {count}

Every call is a single round trip with no retry.  Connection failures,
timeouts and 5xx answers raise ``NetworkError``; a 4xx answer to a submission
or a ``failed`` operation raises ``TransactionRejected``.

Requests carry ``X-API-Key``, ``X-Chain-Id`` and ``X-Stamp-Contract`` headers
when configured, so one relay can serve several networks.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import aiohttp

from truthstamp_core.config import NetworkConfig
from truthstamp_core.errors import NetworkError, TransactionRejected
from truthstamp_core.fingerprint import normalize_fingerprint
from truthstamp_core.gateway import StampRecord

logger = logging.getLogger("truthstamp_gateway")


class HTTPLedgerGateway:
    """aiohttp implementation of the ``LedgerGateway`` interface."""

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        poll_interval: float = 2.0,
        request_timeout: float = 30.0,
        chain_id: int | None = None,
        contract_address: str = "",
        session: aiohttp.ClientSession | None = None,
    ):
        if not base_url:
            raise ValueError("Gateway URL is not configured")
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.poll_interval = poll_interval
        self.request_timeout = request_timeout
        self.chain_id = chain_id
        self.contract_address = contract_address
        self._session = session
        self._owns_session = session is None

    @classmethod
    def from_config(cls, network: NetworkConfig) -> HTTPLedgerGateway:
        return cls(
            network.gateway_url,
            api_key=network.api_key,
            poll_interval=network.poll_interval,
            request_timeout=network.request_timeout,
            chain_id=network.chain_id,
            contract_address=network.contract_address,
        )

    async def __aenter__(self) -> HTTPLedgerGateway:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.request_timeout),
            )
        return self._session

    def _headers(self) -> dict[str, str]:
        """Relay context sent with every request; empty values are omitted."""
        headers = {}
        if self.api_key:
            headers["X-API-Key"] = self.api_key
        if self.chain_id is not None:
            headers["X-Chain-Id"] = str(self.chain_id)
        if self.contract_address:
            headers["X-Stamp-Contract"] = self.contract_address
        return headers

    async def _request(self, method: str, path: str, payload: dict | None = None) -> tuple[int, Any]:
        url = f"{self.base_url}{path}"
        try:
            async with self._get_session().request(
                method, url, json=payload, headers=self._headers(),
            ) as resp:
                try:
                    body = await resp.json(content_type=None)
                except ValueError:
                    body = None
                status = resp.status
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise NetworkError(f"{method} {path} failed: {exc}", url=url) from exc

        if status >= 500:
            raise NetworkError(f"{method} {path} returned HTTP {status}", url=url)
        return status, body

    @staticmethod
    def _error_text(body: Any, default: str) -> str:
        if isinstance(body, dict) and body.get("error"):
            return str(body["error"])
        return default

    # ---- LedgerGateway ----

    async def submit_stamp(self, fingerprint: str, signature: str, metadata: str) -> str:
        status, body = await self._request(
            "POST", "/stamps",
            {"fingerprint": fingerprint, "signature": signature, "metadata": metadata},
        )
        if status >= 400:
            raise TransactionRejected(
                self._error_text(body, f"Submission rejected (HTTP {status})"),
                fingerprint=fingerprint,
            )
        if not isinstance(body, dict) or not body.get("handle"):
            raise NetworkError("Gateway accepted the stamp but returned no handle",
                               fingerprint=fingerprint)
        handle = str(body["handle"])
        logger.info(f"Stamp {fingerprint} submitted as {handle}")
        return handle

    async def wait_for_inclusion(self, handle: str) -> None:
        while True:
            status, body = await self._request("GET", f"/operations/{handle}")
            if status >= 400 or not isinstance(body, dict):
                raise NetworkError(
                    self._error_text(body, f"Operation lookup failed (HTTP {status})"),
                    handle=handle,
                )
            op_status = body.get("status")
            if op_status == "included":
                return
            if op_status == "failed":
                raise TransactionRejected(
                    self._error_text(body, "Operation failed"), handle=handle,
                )
            logger.debug(f"Operation {handle} still {op_status}")
            await asyncio.sleep(self.poll_interval)

    async def get_stamp(self, fingerprint: str) -> StampRecord:
        fp = normalize_fingerprint(fingerprint)
        status, body = await self._request("GET", f"/stamps/{fp}")
        if status == 404:
            return StampRecord.missing(fp)
        if status >= 400 or not isinstance(body, dict):
            raise NetworkError(f"Stamp lookup failed (HTTP {status})", fingerprint=fp)
        if not body.get("exists"):
            return StampRecord.missing(fp)
        try:
            return StampRecord(
                fingerprint=fp,
                creator=str(body["creator"]),
                timestamp=int(body["timestamp"]),
                metadata=str(body.get("metadata") or ""),
                exists=True,
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise NetworkError(f"Malformed stamp record: {exc!r}", fingerprint=fp) from exc

    async def get_stamps_by_creator(self, address: str) -> list[str]:
        status, body = await self._request("GET", f"/creators/{address}/stamps")
        if status >= 400 or not isinstance(body, dict):
            raise NetworkError(f"Creator lookup failed (HTTP {status})", address=address)
        fingerprints = body.get("fingerprints", [])
        if not isinstance(fingerprints, list):
            raise NetworkError("Malformed creator listing", address=address)
        return [str(fp) for fp in fingerprints]

    async def get_stamp_count(self) -> int:
        status, body = await self._request("GET", "/stamps/count")
        if status >= 400 or not isinstance(body, dict):
            raise NetworkError(f"Count lookup failed (HTTP {status})")
        try:
            return int(body.get("count", 0))
        except (TypeError, ValueError) as exc:
            raise NetworkError(f"Malformed stamp count: {exc!r}") from exc
