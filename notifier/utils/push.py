"""
Push gateway: deliver one message to one delivery target.

`send_push` never raises. Every outcome (delivered, rejected target, transport
failure, timeout) comes back as a PushResult so the caller can decide what to
do with the reminder.
"""
import asyncio
import json
import logging
import os
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

import firebase_admin
import httpx
from firebase_admin import credentials, exceptions as firebase_exceptions, messaging

from notifier.config import get_settings
from notifier.utils.json_logger import log_delivery_attempt

logger = logging.getLogger("push")

CLICK_ACTION = "FLUTTER_NOTIFICATION_CLICK"

# FCM errors meaning the token will never work again
_FCM_INVALID_TARGET_ERRORS = (
    messaging.UnregisteredError,
    messaging.SenderIdMismatchError,
)


def _names_registration_token(error: firebase_exceptions.FirebaseError) -> bool:
    """INVALID_ARGUMENT covers both bad tokens and bad messages; only the former disqualifies the target."""
    return "registration token" in str(error).lower()


@dataclass(frozen=True)
class PushResult:
    ok: bool
    reason: Optional[str] = None
    invalid_target: bool = False


def build_data_payload(title: str, body: str, metadata: Optional[Dict[str, Any]] = None) -> Dict[str, str]:
    """Data payload for client-side rendering: title/body duplicated, all values as strings."""
    data = {"title": str(title), "body": str(body or ""), "click_action": CLICK_ACTION}
    for key, value in (metadata or {}).items():
        if value is None:
            continue
        data[str(key)] = str(value)
    return data


# ---------------------------------------------------------------------------
# Firebase Cloud Messaging
# ---------------------------------------------------------------------------

def _ensure_firebase_initialized() -> bool:
    try:
        firebase_admin.get_app()
        return True
    except ValueError:
        pass

    settings = get_settings()
    project_id = settings.fcm_project_id
    creds = (
        settings.fcm_credentials_json
        or os.getenv("GOOGLE_APPLICATION_CREDENTIALS_JSON")
        or os.getenv("GOOGLE_APPLICATION_CREDENTIALS")
    )
    options = {"projectId": project_id} if project_id else None

    if not creds or not creds.strip():
        logger.warning("No FCM credentials configured; push notifications are disabled")
        return False

    try:
        if creds.strip().startswith("{"):
            firebase_admin.initialize_app(credentials.Certificate(json.loads(creds)), options=options)
            logger.info("Firebase app initialized (inline JSON credentials)")
        elif os.path.exists(creds):
            firebase_admin.initialize_app(credentials.Certificate(creds), options=options)
            logger.info("Firebase app initialized (credentials file %s)", creds)
        else:
            logger.error("FCM credentials path does not exist: %s", creds)
            return False
    except (ValueError, OSError) as e:
        logger.error("Failed to initialize Firebase: %r", e)
        return False
    return True


def build_fcm_message(
    target: str, title: str, body: str, metadata: Optional[Dict[str, Any]] = None
) -> messaging.Message:
    data = build_data_payload(title, body, metadata)
    tag = data.get("tag")
    return messaging.Message(
        token=target,
        notification=messaging.Notification(title=title, body=body),
        data=data,
        android=messaging.AndroidConfig(
            priority="high",
            notification=messaging.AndroidNotification(
                sound="default",
                priority="high",
                default_vibrate_timings=True,
                tag=tag,
            ),
        ),
        apns=messaging.APNSConfig(
            payload=messaging.APNSPayload(aps=messaging.Aps(sound="default", badge=1)),
        ),
        webpush=messaging.WebpushConfig(
            notification=messaging.WebpushNotification(title=title, body=body, tag=tag),
        ),
    )


async def send_fcm(target: str, title: str, body: str, metadata: Optional[Dict[str, Any]] = None) -> PushResult:
    if not _ensure_firebase_initialized():
        return PushResult(ok=False, reason="fcm not configured")

    message = build_fcm_message(target, title, body, metadata)
    try:
        # The SDK call is blocking
        message_id = await asyncio.to_thread(messaging.send, message)
    except _FCM_INVALID_TARGET_ERRORS as e:
        return PushResult(ok=False, reason=f"target no longer valid: {e}", invalid_target=True)
    except firebase_exceptions.InvalidArgumentError as e:
        return PushResult(ok=False, reason=f"fcm rejected message: {e}", invalid_target=_names_registration_token(e))
    except firebase_exceptions.FirebaseError as e:
        return PushResult(ok=False, reason=f"fcm error ({e.code}): {e}")
    logger.debug("FCM accepted message %s", message_id)
    return PushResult(ok=True)


# ---------------------------------------------------------------------------
# Generic webhook
# ---------------------------------------------------------------------------

async def send_webhook(
    target: str,
    title: str,
    body: str,
    metadata: Optional[Dict[str, Any]] = None,
    *,
    client: Optional[httpx.AsyncClient] = None,
) -> PushResult:
    """POST the message as JSON to the target URL."""
    payload = {
        "notification": {"title": str(title), "body": str(body or "")},
        "data": build_data_payload(title, body, metadata),
    }
    headers = {"Content-Type": "application/json"}

    try:
        if client is None:
            async with httpx.AsyncClient(timeout=get_settings().push_timeout_seconds) as c:
                resp = await c.post(target, json=payload, headers=headers)
        else:
            resp = await client.post(target, json=payload, headers=headers)
        resp.raise_for_status()
    except httpx.HTTPStatusError as e:
        code = e.response.status_code
        return PushResult(ok=False, reason=f"HTTP {code}", invalid_target=code in (404, 410))
    except httpx.InvalidURL as e:
        return PushResult(ok=False, reason=f"invalid target URL: {e}", invalid_target=True)
    except httpx.HTTPError as e:
        return PushResult(ok=False, reason=f"transport error: {e!r}")
    return PushResult(ok=True)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

async def send_push(
    target: str,
    title: str,
    body: str,
    metadata: Optional[Dict[str, Any]] = None,
) -> PushResult:
    """Send a single push via the configured provider, bounded by PUSH_TIMEOUT_SECONDS."""
    settings = get_settings()
    provider = (settings.push_provider or "fcm").strip().lower()
    timeout = float(settings.push_timeout_seconds)
    start = time.perf_counter()

    if not target:
        result = PushResult(ok=False, reason="no delivery target", invalid_target=True)
    elif provider not in ("fcm", "webhook"):
        result = PushResult(ok=False, reason=f"unknown push provider '{provider}'")
    else:
        sender = send_webhook if provider == "webhook" else send_fcm
        try:
            result = await asyncio.wait_for(sender(target, title, body, metadata), timeout=timeout)
        except asyncio.TimeoutError:
            result = PushResult(ok=False, reason=f"timed out after {timeout:g}s")
        except Exception as e:
            logger.error("Unexpected push failure via %s: %r", provider, e)
            result = PushResult(ok=False, reason=f"unexpected error: {e!r}")

    latency_ms = (time.perf_counter() - start) * 1000.0
    if result.ok:
        logger.info("Push sent via %s: %s", provider, title)
    else:
        logger.warning("Push failed via %s: %s", provider, result.reason)

    try:
        log_delivery_attempt(
            path=settings.delivery_log_path,
            provider=provider,
            target=target,
            title=title,
            metadata=metadata,
            ok=result.ok,
            reason=result.reason,
            invalid_target=result.invalid_target,
            latency_ms=latency_ms,
        )
    except OSError as e:
        logger.warning("Failed to write delivery log: %s", e)

    return result
