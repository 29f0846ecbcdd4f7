"""
Firebase authentication utilities for token verification.

The archive never issues credentials; it only asks Firebase who the bearer
of an ID token is.
"""
import json
import logging
import os
from typing import Optional

import firebase_admin
from firebase_admin import auth, credentials

from app.config import settings

logger = logging.getLogger(__name__)


_firebase_initialized = False


def initialize_firebase_admin() -> None:
    """
    Initialize Firebase Admin SDK for authentication.

    Called once at application startup. Initialization methods, in order:
    1. Service account key file (FIREBASE_SERVICE_ACCOUNT_PATH)
    2. Service account JSON in environment variable (FIREBASE_SERVICE_ACCOUNT_JSON)
    3. Default credentials (for Google Cloud environments)
    """
    global _firebase_initialized

    if firebase_admin._apps:
        _firebase_initialized = True
        logger.info("Firebase Admin SDK already initialized")
        return

    service_account_path = settings.firebase_service_account_path or os.getenv("FIREBASE_SERVICE_ACCOUNT_PATH")
    if service_account_path and os.path.exists(service_account_path):
        firebase_admin.initialize_app(credentials.Certificate(service_account_path))
        _firebase_initialized = True
        logger.info("Firebase Admin SDK initialized from service account file")
        return

    service_account_json = os.getenv("FIREBASE_SERVICE_ACCOUNT_JSON")
    if service_account_json:
        firebase_admin.initialize_app(credentials.Certificate(json.loads(service_account_json)))
        _firebase_initialized = True
        logger.info("Firebase Admin SDK initialized from environment variable")
        return

    try:
        firebase_admin.initialize_app()
        _firebase_initialized = True
        logger.info("Firebase Admin SDK initialized with default credentials")
    except (ValueError, OSError) as e:
        logger.warning(
            f"Firebase Admin SDK initialization failed: {e}. "
            "Authenticated requests will be rejected until FIREBASE_SERVICE_ACCOUNT_PATH "
            "or FIREBASE_SERVICE_ACCOUNT_JSON is set."
        )
        _firebase_initialized = False


def verify_id_token(token: str, check_revoked: bool = True) -> dict:
    """
    Verify a Firebase ID token and return the decoded token.

    Raises:
        ValueError: If token is invalid, expired, revoked, or Firebase is not initialized
    """
    if not _firebase_initialized:
        raise ValueError("Firebase Admin SDK not initialized")

    try:
        return auth.verify_id_token(token, check_revoked=check_revoked)
    except auth.ExpiredIdTokenError as e:
        logger.warning(f"Expired Firebase token: {e}")
        raise ValueError(f"Token expired: {e}") from e
    except auth.RevokedIdTokenError as e:
        logger.warning(f"Revoked Firebase token: {e}")
        raise ValueError(f"Token revoked: {e}") from e
    except auth.InvalidIdTokenError as e:
        logger.warning(f"Invalid Firebase token: {e}")
        raise ValueError(f"Invalid token: {e}") from e
    except (auth.CertificateFetchError, auth.UserDisabledError) as e:
        logger.error(f"Error verifying Firebase token: {e}")
        raise ValueError(f"Token verification failed: {e}") from e


def uid_from_authorization(authorization: Optional[str]) -> Optional[str]:
    """
    Extract the verified uid from an ``Authorization`` header value.

    Returns None when no header is present (anonymous request).

    Raises:
        ValueError: If the header is malformed or the token does not verify
    """
    if authorization is None or not authorization.strip():
        return None

    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer":
        raise ValueError("Invalid authorization header format")
    token = token.strip()
    if not token:
        raise ValueError("Missing token")

    decoded = verify_id_token(token)
    uid = decoded.get("uid") or decoded.get("sub")
    if not uid:
        raise ValueError("Token carries no uid")
    return uid


def is_firebase_initialized() -> bool:
    """Check if Firebase Admin SDK is initialized."""
    return _firebase_initialized
