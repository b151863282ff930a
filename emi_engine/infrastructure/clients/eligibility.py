"""Eligibility/credit service HTTP client"""

import httpx
from emi_engine.domain.models import EligibilityDecision
from emi_engine.domain.exceptions import EligibilityServiceError
from emi_engine.config import settings
from emi_engine.infrastructure.observability.metrics import eligibility_failures_counter


class EligibilityClient:
    """Client for the external KYC/credit eligibility service"""

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url or settings.eligibility_api_base
        self.timeout = timeout or settings.http_timeout_seconds
        self.transport = transport

    async def is_eligible(self, user_id: str, principal: int) -> EligibilityDecision:
        """
        Ask whether a user may finance a principal.

        Raises:
            EligibilityServiceError: On timeout, HTTP errors, or invalid response
        """
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            try:
                response = await client.post(
                    f"{self.base_url}/eligibility/check",
                    json={"user_id": user_id, "principal": principal},
                )
                response.raise_for_status()
                data = response.json()

                return EligibilityDecision(
                    approved=bool(data["approved"]),
                    credit_limit=int(data["credit_limit"]),
                )

            except httpx.TimeoutException as e:
                eligibility_failures_counter.inc()
                raise EligibilityServiceError(f"Eligibility service timeout after {self.timeout}s") from e
            except httpx.HTTPStatusError as e:
                eligibility_failures_counter.inc()
                raise EligibilityServiceError(f"Eligibility service error: {e.response.status_code}") from e
            except httpx.RequestError as e:
                eligibility_failures_counter.inc()
                raise EligibilityServiceError(f"Eligibility service unreachable: {e}") from e
            except (KeyError, ValueError, TypeError) as e:
                eligibility_failures_counter.inc()
                raise EligibilityServiceError(f"Invalid eligibility response: {e}") from e
