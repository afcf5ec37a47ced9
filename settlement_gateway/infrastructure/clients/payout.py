"""Payout provider HTTP client for bank resolution and transfers"""

import httpx
from typing import Optional
from settlement_gateway.domain.models import PayoutRequest, PayoutResult, ResolvedBankAccount
from settlement_gateway.domain.exceptions import BankResolutionError
from settlement_gateway.config import settings
from settlement_gateway.infrastructure.observability.metrics import payout_latency_histogram, payout_failure_counter
from settlement_gateway.utils.money import to_major


class BankPayoutClient:
    """Client for the external payout provider"""

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        provider_name: str | None = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url or settings.payout_api_base
        self.timeout = timeout or settings.http_timeout_seconds
        self.provider_name = provider_name or settings.payout_provider_name
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, transport=self.transport)

    async def resolve_bank_account(
        self, bank_code: str, account_no: str, provider_name: str | None = None
    ) -> ResolvedBankAccount:
        """
        Look up the account holder for a bank destination.

        Raises:
            BankResolutionError: On timeout, HTTP errors, or invalid response
        """
        async with self._client() as client:
            try:
                response = await client.get(
                    "/banks/resolve",
                    params={
                        "bank_code": bank_code,
                        "account_no": account_no,
                        "provider": provider_name or self.provider_name,
                    },
                )
                response.raise_for_status()
                data = response.json()

                return ResolvedBankAccount(
                    account_name=data["account_name"],
                    account_no=data["account_no"],
                    bank_code=data["bank_code"],
                    bank_name=data.get("bank_name", ""),
                    platform_code=data["platform_code"],
                )

            except httpx.TimeoutException as e:
                raise BankResolutionError(f"Bank resolution timeout after {self.timeout}s") from e
            except httpx.HTTPStatusError as e:
                raise BankResolutionError(f"Unable to resolve account: {e.response.status_code}") from e
            except httpx.RequestError as e:
                raise BankResolutionError(f"Payout provider unreachable: {e}") from e
            except (KeyError, ValueError, TypeError) as e:
                raise BankResolutionError(f"Invalid bank resolution data: {e}") from e

    async def execute_payout(self, request: PayoutRequest) -> PayoutResult:
        """
        Transfer `request.amount` (minor units) to a bank destination.

        Provider failures are returned as an unsuccessful result, never raised.
        """
        payload = {
            "amount": str(to_major(request.amount)),
            "currency": request.currency,
            "account_no": request.destination.account_no,
            "account_name": request.destination.account_name,
            "bank_code": request.destination.bank_code,
            "reference": request.reference,
            "narration": request.narration,
            "provider": self.provider_name,
        }

        async with self._client() as client:
            try:
                with payout_latency_histogram.time():
                    response = await client.post("/payouts/bank", json=payload)
                response.raise_for_status()
                data = response.json()

                if data.get("status") not in ("successful", "pending"):
                    payout_failure_counter.inc()
                    return PayoutResult(success=False, message=data.get("message", "payout rejected"))

                return PayoutResult(
                    success=True,
                    provider_reference=data.get("provider_reference"),
                    message=data.get("message", ""),
                )

            except httpx.TimeoutException:
                payout_failure_counter.inc()
                return PayoutResult(success=False, message=f"Payout timeout after {self.timeout}s")
            except httpx.HTTPStatusError as e:
                payout_failure_counter.inc()
                return PayoutResult(success=False, message=f"Payout provider error: {e.response.status_code}")
            except httpx.RequestError as e:
                payout_failure_counter.inc()
                return PayoutResult(success=False, message=f"Payout provider unreachable: {e}")
            except ValueError as e:
                payout_failure_counter.inc()
                return PayoutResult(success=False, message=f"Invalid payout response: {e}")
