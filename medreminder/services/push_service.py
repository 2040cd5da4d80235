from typing import Dict, Optional
import json
import logging
import os
import time
import uuid

from firebase_admin import messaging, credentials, initialize_app, _apps  # type: ignore

from medreminder.core.config import settings

logger = logging.getLogger(__name__)


def _ensure_firebase_initialized() -> bool:
    """Initialise the default Firebase app once. Returns False when no credentials exist."""
    if _apps:
        return True

    proj = settings.FCM_PROJECT_ID
    env_gac_json = os.getenv("GOOGLE_APPLICATION_CREDENTIALS_JSON")
    env_gac = os.getenv("GOOGLE_APPLICATION_CREDENTIALS")
    cfg_val = settings.FCM_CREDENTIALS_JSON

    creds_json: Optional[str] = cfg_val or env_gac_json or env_gac
    logger.info(
        f"[FCM] Initializing Firebase | project_id={proj} "
        f"REMINDER_FCM_CREDENTIALS_JSON set={bool(cfg_val)}, "
        f"GOOGLE_APPLICATION_CREDENTIALS_JSON set={bool(env_gac_json)}, "
        f"GOOGLE_APPLICATION_CREDENTIALS set={bool(env_gac)}"
    )

    if not creds_json or creds_json.strip() == "":
        logger.warning("[FCM] No credentials provided - push notifications are disabled")
        return False

    options = {"projectId": proj} if proj else None
    try:
        if creds_json.strip().startswith("{"):
            cred = credentials.Certificate(json.loads(creds_json))
            initialize_app(cred, options=options)
            logger.info("[FCM] Firebase app initialized (inline JSON)")
        elif os.path.exists(creds_json):
            cred = credentials.Certificate(creds_json)
            initialize_app(cred, options=options)
            logger.info("[FCM] Firebase app initialized (file)")
        else:
            logger.warning(f"[FCM] Credentials file not found: {creds_json}")
            return False
    except (ValueError, OSError) as e:
        logger.error(f"[FCM] Failed to initialize Firebase: {e!r}")
        return False
    return bool(_apps)


def is_configured() -> bool:
    return _ensure_firebase_initialized()


def build_message(token: str, title: str, body: str, data: Optional[Dict[str, str]] = None) -> messaging.Message:
    # Unique id so iOS does not collapse consecutive reminders for the same medication
    notification_id = str(uuid.uuid4())
    payload = {str(k): str(v) for k, v in (data or {}).items()}
    payload.setdefault("timestamp", str(int(time.time() * 1000)))
    payload["notification_id"] = notification_id

    return messaging.Message(
        token=token,
        notification=messaging.Notification(title=title, body=body),
        data=payload,
        android=messaging.AndroidConfig(
            priority="high",
            notification=messaging.AndroidNotification(
                channel_id="medication_reminders",
                default_sound=True,
                default_vibrate_timings=True,
            ),
        ),
        apns=messaging.APNSConfig(
            headers={
                "apns-push-type": "alert",
                "apns-priority": "10",
                "apns-collapse-id": notification_id,
            },
            payload=messaging.APNSPayload(aps=messaging.Aps(sound="default", badge=1)),
        ),
    )


def send_push(token: str, title: str, body: str, data: Optional[Dict[str, str]] = None) -> str:
    """Send one FCM message and return its message id. Transport errors propagate."""
    message = build_message(token, title, body, data)
    logger.info(f"[FCM] Sending notification to token: {token[:20]}... title={title!r}")
    result = messaging.send(message, dry_run=False)
    logger.info(f"[FCM] Notification sent successfully: {result}")
    return result
