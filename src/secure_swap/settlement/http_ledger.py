"""HttpLedgerExecutor — settlement through a network ledger service.

Speaks a small JSON API exposed by the custody/ledger service that holds the
escrow contract:

    POST /v1/transfers              submit a hold or release (idempotent by key)
    GET  /v1/transfers/{reference}  read a receipt's finality
    GET  /v1/accounts/{principal}   spendable balance
    GET  /v1/health                 liveness
    GET  /v1/contracts/{address}    whether the escrow contract is deployed

Every request is signed with the service's signing key:

    payload   = timestamp + METHOD + path + body
    signature = HMAC-SHA256(signing_key, payload)

Reads are retried with tenacity; writes are never retried here. A write
whose outcome is unknown (read timeout, 5xx other than 503) raises
TimeoutError so the lifecycle keeps the leg and resubmits the same
idempotency key during reconciliation.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import time
from typing import TYPE_CHECKING, Any

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from secure_swap.domain.enums import LegKind, ReceiptStatus
from secure_swap.domain.exceptions import BackendUnavailableError, SettlementFailureError
from secure_swap.domain.settlement_protocol import SettlementReceipt
from secure_swap.logging_config import get_logger

if TYPE_CHECKING:
    from secure_swap.domain.identifiers import TradeId

logger = get_logger(__name__)

_read_retry = retry(
    retry=retry_if_exception_type((BackendUnavailableError, TimeoutError)),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.2, min=0.2, max=2),
    reraise=True,
)


class HttpLedgerExecutor:
    """Settlement executor backed by a remote ledger service."""

    def __init__(
        self,
        base_url: str,
        signer_address: str,
        signing_key: str,
        escrow_address: str = "",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._signer = signer_address
        self._key = signing_key.encode("utf-8")
        self._escrow_address = escrow_address
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    # ------------------------------------------------------------------
    # SettlementExecutor protocol
    # ------------------------------------------------------------------

    async def hold(
        self, trade_id: TradeId, payer: str, amount: int, *, idempotency_key: str
    ) -> SettlementReceipt:
        return await self._submit(LegKind.HOLD, trade_id, payer, amount, idempotency_key)

    async def release(
        self, trade_id: TradeId, recipient: str, amount: int, *, idempotency_key: str
    ) -> SettlementReceipt:
        return await self._submit(LegKind.RELEASE, trade_id, recipient, amount, idempotency_key)

    @_read_retry
    async def get_receipt(self, reference: str) -> SettlementReceipt:
        response = await self._send("GET", f"/v1/transfers/{reference}")
        if response.status_code == 404:
            raise SettlementFailureError(f"Unknown settlement reference {reference}", reference)
        self._raise_for_read(response)
        return self._parse_receipt(self._read_json(response))

    @_read_retry
    async def get_balance(self, principal: str) -> int:
        response = await self._send("GET", f"/v1/accounts/{principal}")
        self._raise_for_read(response)
        return int(self._read_json(response)["balance"])

    async def ping(self) -> bool:
        try:
            response = await self._send("GET", "/v1/health")
            if response.status_code != 200:
                return False
            if self._escrow_address:
                contract = await self._send("GET", f"/v1/contracts/{self._escrow_address}")
                if contract.status_code != 200 or not contract.json().get("deployed"):
                    logger.error("ledger.escrow_contract_missing", address=self._escrow_address)
                    return False
            return True
        except (BackendUnavailableError, TimeoutError, httpx.HTTPError, ValueError) as exc:
            logger.warning("ledger.ping_failed", error=str(exc))
            return False

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _sign(self, method: str, path: str, body: str) -> dict[str, str]:
        timestamp = str(int(time.time() * 1000))
        payload = f"{timestamp}{method.upper()}{path}{body}"
        signature = hmac.new(self._key, payload.encode("utf-8"), hashlib.sha256).hexdigest()
        return {
            "X-Signer": self._signer,
            "X-Timestamp": timestamp,
            "X-Signature": signature,
            "Content-Type": "application/json",
        }

    async def _send(self, method: str, path: str, body: dict[str, Any] | None = None) -> httpx.Response:
        content = json.dumps(body, separators=(",", ":")) if body is not None else ""
        headers = self._sign(method, path, content)
        try:
            return await self._client.request(method, path, content=content or None, headers=headers)
        except (httpx.ConnectError, httpx.ConnectTimeout, httpx.PoolTimeout) as exc:
            raise BackendUnavailableError(f"ledger unreachable: {exc}") from exc
        except httpx.TimeoutException as exc:
            raise TimeoutError(f"ledger did not answer {method} {path}") from exc

    @staticmethod
    def _read_json(response: httpx.Response) -> dict[str, Any]:
        # An unreadable answer to a read is retried like an outage.
        try:
            data = response.json()
        except ValueError as exc:
            raise BackendUnavailableError("ledger returned an unreadable body") from exc
        if not isinstance(data, dict):
            raise BackendUnavailableError("ledger returned an unexpected body")
        return data

    @staticmethod
    def _raise_for_read(response: httpx.Response) -> None:
        if response.status_code >= 500:
            raise BackendUnavailableError(f"ledger returned {response.status_code}")
        if response.status_code >= 400:
            raise SettlementFailureError(f"ledger returned {response.status_code}: {response.text}")

    async def _submit(
        self,
        kind: LegKind,
        trade_id: TradeId,
        counterparty: str,
        amount: int,
        idempotency_key: str,
    ) -> SettlementReceipt:
        body = {
            "idempotency_key": idempotency_key,
            "trade_id": trade_id.hex,
            "kind": kind.value,
            "counterparty": counterparty,
            "amount": str(amount),
            "escrow": self._escrow_address,
        }
        response = await self._send("POST", "/v1/transfers", body)

        if response.status_code == 503:
            # Not accepted; nothing was submitted.
            raise BackendUnavailableError("ledger is unavailable (503)")
        if response.status_code >= 500:
            raise TimeoutError(f"ledger outcome unknown ({response.status_code})")
        if response.status_code >= 400:
            try:
                reason = response.json().get("error", response.text)
            except ValueError:
                reason = response.text
            raise SettlementFailureError(f"{kind.value} rejected: {reason}")

        try:
            data = response.json()
        except ValueError as exc:
            raise TimeoutError(f"ledger outcome unknown: unreadable answer to {kind.value}") from exc
        if not isinstance(data, dict):
            raise TimeoutError(f"ledger outcome unknown: unexpected answer to {kind.value}")
        data.setdefault("kind", kind.value)
        data.setdefault("counterparty", counterparty)
        data.setdefault("amount", str(amount))
        data.setdefault("idempotency_key", idempotency_key)
        try:
            receipt = self._parse_receipt(data)
        except SettlementFailureError as exc:
            # The ledger accepted the request; only its answer is unreadable.
            raise TimeoutError(f"ledger outcome unknown: {exc.message}") from exc
        logger.info(
            "ledger.submitted",
            kind=kind.value,
            trade_id=trade_id.hex,
            reference=receipt.reference,
            status=receipt.status.value,
        )
        return receipt

    @staticmethod
    def _parse_receipt(data: dict[str, Any]) -> SettlementReceipt:
        try:
            return SettlementReceipt(
                reference=data["reference"],
                status=ReceiptStatus(data["status"]),
                kind=LegKind(data["kind"]),
                counterparty=str(data["counterparty"]).lower(),
                amount=int(data["amount"]),
                idempotency_key=data["idempotency_key"],
                error=data.get("error"),
            )
        except (KeyError, ValueError) as exc:
            raise SettlementFailureError(f"malformed ledger receipt: {exc}") from exc
