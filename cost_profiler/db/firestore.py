import base64
import binascii
import json
import os
from typing import Any, Dict, Optional

from google.cloud import firestore
from google.oauth2 import service_account

from cost_profiler.config.logger import get_logger

LOGGER = get_logger("cost_profiler.firestore")


def decode_service_account(encoded: str) -> Dict[str, Any]:
    """Turn the base64 service-account blob from the environment into a dict."""

    try:
        payload = json.loads(base64.b64decode(encoded, validate=True).decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, ValueError) as exc:
        raise ValueError("FIREBASE_SERVICE_ACCOUNT_BASE64 is not base64-encoded JSON") from exc
    if not isinstance(payload, dict) or "client_email" not in payload:
        raise ValueError("FIREBASE_SERVICE_ACCOUNT_BASE64 does not hold a service account key")
    return payload


def get_firestore_client(
    service_account_base64: Optional[str] = None,
    project_id: Optional[str] = None,
) -> firestore.AsyncClient:
    """Async client for the event rows and the realtime totals document.

    With no service account, application default credentials apply; when
    ``FIRESTORE_EMULATOR_HOST`` is set the client library talks to the emulator.
    """

    emulator = os.getenv("FIRESTORE_EMULATOR_HOST")
    if emulator:
        LOGGER.info("Using Firestore emulator", extra={"emulatorHost": emulator})
        return firestore.AsyncClient(project=project_id or "cost-profiler-local")

    if not service_account_base64:
        LOGGER.info("No service account configured; using default credentials")
        return firestore.AsyncClient(project=project_id)

    try:
        payload = decode_service_account(service_account_base64)
    except ValueError as exc:
        LOGGER.error("Firestore credentials rejected: %s", exc)
        raise

    credentials = service_account.Credentials.from_service_account_info(payload)
    project = project_id or payload.get("project_id")
    LOGGER.info(
        "Firestore client initialized with service account",
        extra={"project": project, "serviceAccount": payload["client_email"]},
    )
    return firestore.AsyncClient(credentials=credentials, project=project)
