"""HTTP client for the partner workflow platform.

Two calls go out to the partner: the status-change webhook (best effort,
bounded exponential backoff) and the user lookup that turns an opaque
partner user id into a chat-platform user id.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any

import httpx

from convocrm.core.correlation import parse_numeric_id
from convocrm.core.status_taxonomy import to_partner_id
from convocrm.settings import settings

logger = logging.getLogger(__name__)

UNKNOWN_STATUS_MAPPING = "Unknown status mapping"


@dataclass
class StatusSyncResult:
    """Outcome of a status webhook push."""

    success: bool
    error: str | None = None
    attempts: int = 0
    response: Any = None


def backoff_delay(attempt: int, base: float, cap: float) -> float:
    """Delay after a failed attempt (1-based): ``min(base * 2**(attempt-1), cap)``."""
    return min(base * (2 ** (attempt - 1)), cap)


def build_status_payload(
    correlation_id: int | str, new_partner_id: str, old_partner_id: str | None
) -> dict[str, Any]:
    """Webhook body in the partner's ``leads.status`` shape."""
    return {
        "leads": {
            "status": [
                {
                    "id": str(correlation_id),
                    "status_id": new_partner_id,
                    "old_status_id": old_partner_id or new_partner_id,
                    "last_modified": str(int(time.time())),
                }
            ]
        }
    }


class PartnerClient:
    """Outbound calls to the partner platform."""

    def __init__(
        self,
        webhook_url: str | None = None,
        api_url: str | None = None,
        api_token: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep=asyncio.sleep,
    ) -> None:
        self.webhook_url = webhook_url if webhook_url is not None else settings.partner_webhook_url
        self.api_url = (api_url if api_url is not None else settings.partner_api_url or "").rstrip("/")
        self.api_token = api_token if api_token is not None else settings.partner_api_token
        self.max_attempts = settings.partner_webhook_max_attempts
        self.backoff_base = settings.partner_webhook_backoff_base_seconds
        self.backoff_cap = settings.partner_webhook_backoff_cap_seconds
        self.timeout = settings.partner_webhook_timeout_seconds
        self._transport = transport
        self._sleep = sleep

    def _get_client(self, **kwargs) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport, **kwargs)

    async def push_status_change(
        self,
        correlation_id: int | str,
        new_status: str,
        old_status: str | None = None,
    ) -> StatusSyncResult:
        """Tell the partner an order changed status.

        Never raises. An unmapped new status fails immediately without any
        HTTP call; transport errors and non-2xx replies are retried up to
        ``partner_webhook_max_attempts`` times.

        Args:
            correlation_id: Order correlation id known to the partner
            new_status: Internal status after the change
            old_status: Internal status before the change

        Returns:
            StatusSyncResult
        """
        new_partner_id = to_partner_id(new_status)
        if not new_partner_id:
            logger.warning(f"Partner webhook skipped, unknown status mapping for: {new_status}")
            return StatusSyncResult(success=False, error=UNKNOWN_STATUS_MAPPING)
        if not self.webhook_url:
            logger.error("Partner webhook skipped: PARTNER_WEBHOOK_URL is not configured")
            return StatusSyncResult(success=False, error="Partner webhook URL is not configured")

        payload = build_status_payload(correlation_id, new_partner_id, to_partner_id(old_status))
        logger.info(
            "Sending partner status change",
            extra={
                "correlation_id": str(correlation_id),
                "old_status": old_status,
                "new_status": new_status,
            },
        )

        last_error = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                async with self._get_client() as client:
                    response = await client.post(self.webhook_url, json=payload)
                    response.raise_for_status()
                logger.info(
                    f"Partner webhook delivered for {correlation_id} "
                    f"(attempt {attempt}/{self.max_attempts})"
                )
                return StatusSyncResult(
                    success=True, attempts=attempt, response=_safe_json(response)
                )
            except httpx.TimeoutException:
                last_error = "Request timed out"
            except httpx.HTTPStatusError as e:
                last_error = f"HTTP {e.response.status_code}"
            except httpx.HTTPError as e:
                last_error = str(e) or e.__class__.__name__

            logger.warning(
                f"Partner webhook failed for {correlation_id} "
                f"(attempt {attempt}/{self.max_attempts}): {last_error}"
            )
            if attempt < self.max_attempts:
                await self._sleep(backoff_delay(attempt, self.backoff_base, self.backoff_cap))

        logger.error(f"Partner webhook gave up after {self.max_attempts} attempts for {correlation_id}")
        return StatusSyncResult(success=False, error=last_error, attempts=self.max_attempts)

    async def lookup_channel_user_id(self, partner_user_ref: str) -> str | None:
        """Resolve an opaque partner user id to a chat-platform user id.

        Returns None when the lookup is not configured, fails, or the user
        has no chat id on file.
        """
        if not self.api_url or not self.api_token:
            logger.warning("Partner user lookup skipped: PARTNER_API_URL/TOKEN not configured")
            return None
        try:
            async with self._get_client(
                headers={"Authorization": f"Bearer {self.api_token}"}
            ) as client:
                response = await client.get(f"{self.api_url}/obj/User/{partner_user_ref}")
                response.raise_for_status()
                data = response.json()
        except httpx.TimeoutException:
            logger.warning(f"Partner user lookup timed out for {partner_user_ref}")
            return None
        except httpx.HTTPStatusError as e:
            logger.warning(
                f"Partner user lookup error for {partner_user_ref}: {e.response.status_code}"
            )
            return None
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Partner user lookup failed for {partner_user_ref}: {e}")
            return None

        body = data.get("response") if isinstance(data, dict) else None
        telegram_id = parse_numeric_id((body or {}).get("TelegramID"))
        return str(telegram_id) if telegram_id else None


def _safe_json(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text
