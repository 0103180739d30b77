"""Upload of encoded screenshots to device webhooks."""

from __future__ import annotations

from dataclasses import dataclass

import httpx
from loguru import logger

from dashsnap.utils.helpers import truncate_output

CONTENT_TYPES = {
    "png": "image/png",
    "jpeg": "image/jpeg",
    "jpg": "image/jpeg",
    "bmp": "image/bmp",
}

RESPONSE_BODY_LOG_LENGTH = 200


@dataclass
class DeliveryOutcome:
    success: bool
    status: int = 0
    error: str | None = None

    def to_dict(self) -> dict:
        data: dict = {"success": self.success, "status": self.status}
        if self.error:
            data["error"] = self.error
        return data


async def deliver(
    image: bytes,
    webhook_url: str,
    headers: dict[str, str] | None = None,
    fmt: str = "png",
    client: httpx.AsyncClient | None = None,
    timeout: float = 30.0,
) -> DeliveryOutcome:
    """
    POST an image to a webhook.

    Failures are returned as an unsuccessful outcome rather than raised.
    """
    content_type = CONTENT_TYPES.get(fmt, "image/png")
    request_headers = {**(headers or {}), "Content-Type": content_type}
    logger.info(f"Sending webhook to: {webhook_url} ({content_type}, {len(image)} bytes)")

    own_client = client is None
    http = client or httpx.AsyncClient(timeout=timeout)
    try:
        response = await http.post(webhook_url, content=image, headers=request_headers)
    except httpx.HTTPError as e:
        logger.error(f"Webhook delivery to {webhook_url} failed: {e}")
        return DeliveryOutcome(success=False, error=str(e))
    finally:
        if own_client:
            await http.aclose()

    logger.info(f"Webhook response: {response.status_code} {response.reason_phrase}")
    if response.text:
        logger.debug(f"Response body: {truncate_output(response.text, RESPONSE_BODY_LOG_LENGTH)}")

    if not response.is_success:
        error = f"HTTP {response.status_code}: {response.reason_phrase}"
        logger.error(f"Webhook delivery to {webhook_url} failed: {error}")
        return DeliveryOutcome(success=False, status=response.status_code, error=error)

    return DeliveryOutcome(success=True, status=response.status_code)
