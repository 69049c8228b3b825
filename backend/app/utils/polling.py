"""Bounded status polling for clients waiting on a payment

Used after a redirect back from a gateway and while a Nequi push is waiting
for approval in the customer's app. A poll that runs out of attempts returns
the last known state with timed_out=True; callers treat that as still
pending, never as a failure.

This is client-side code: the confirmation page worker and SDK consumers
call it against the public status routes. The API process never imports it.
"""
import logging
import time
from typing import Any, Callable, Dict, Iterable, Optional

import httpx

logger = logging.getLogger(__name__)

ORDER_TERMINAL_STATUSES = ("COMPLETED", "FAILED", "CANCELLED")
SUBSCRIPTION_TERMINAL_STATUSES = ("ACTIVE", "CANCELLED")


def _poll(
    url: str,
    status_key: str,
    terminal: Iterable[str],
    max_attempts: int,
    interval: float,
    cookies: Optional[Dict[str, str]] = None,
    timeout: float = 10.0,
    sleep: Callable[[float], None] = time.sleep
) -> Dict[str, Any]:
    terminal = tuple(terminal)
    last: Dict[str, Any] = {}

    for attempt in range(1, max_attempts + 1):
        try:
            response = httpx.get(url, cookies=cookies, timeout=timeout)
        except httpx.HTTPError as e:
            logger.warning(f"Status poll {attempt}/{max_attempts} for {url} failed: {e}")
            response = None

        if response is not None:
            if response.status_code == 404:
                return {**last, "found": False, "timed_out": False, "attempts": attempt}
            if response.status_code == 200:
                last = response.json()
                if last.get(status_key) in terminal:
                    return {**last, "found": True, "timed_out": False, "attempts": attempt}
            else:
                logger.warning(f"Status poll {attempt}/{max_attempts} for {url} returned {response.status_code}")

        if attempt < max_attempts:
            sleep(interval)

    return {**last, "found": bool(last), "timed_out": True, "attempts": max_attempts}


def poll_order_status(base_url: str, reference: str, max_attempts: int = 20, interval: float = 3.0,
                      **kwargs) -> Dict[str, Any]:
    """Poll GET /api/orders/{reference}/status until the order leaves PENDING"""
    url = f"{base_url.rstrip('/')}/api/orders/{reference}/status"
    return _poll(url, "paymentStatus", ORDER_TERMINAL_STATUSES, max_attempts, interval, **kwargs)


def poll_subscription_status(base_url: str, subscription_id: int, session_id: str, max_attempts: int = 40,
                             interval: float = 3.0, **kwargs) -> Dict[str, Any]:
    """Poll a subscription until it is ACTIVE or CANCELLED (owner session required)"""
    url = f"{base_url.rstrip('/')}/api/subscriptions/{subscription_id}/status"
    return _poll(
        url, "status", SUBSCRIPTION_TERMINAL_STATUSES, max_attempts, interval,
        cookies={"session_id": session_id}, **kwargs
    )
