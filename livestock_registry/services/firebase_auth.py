import json
import logging
import os
from typing import Optional

import firebase_admin
from fastapi import Header, HTTPException
from firebase_admin import auth as fb_auth, credentials
from firebase_admin.exceptions import FirebaseError

from ..models import Caller, Role

logger = logging.getLogger(__name__)

_firebase_ready = False


def _init_firebase_if_needed() -> bool:
    global _firebase_ready
    if _firebase_ready:
        return True
    try:
        if not firebase_admin._apps:
            # Try FIREBASE_CREDENTIALS first (for production)
            firebase_creds_json = os.getenv('FIREBASE_CREDENTIALS')
            if firebase_creds_json:
                cred = credentials.Certificate(json.loads(firebase_creds_json))
                firebase_admin.initialize_app(cred)
            else:
                # Fallback to file path (for local development)
                service_account_path = os.getenv('GOOGLE_APPLICATION_CREDENTIALS')
                if service_account_path and os.path.exists(service_account_path):
                    firebase_admin.initialize_app(credentials.Certificate(service_account_path))
                else:
                    firebase_admin.initialize_app()
        _firebase_ready = True
    except (ValueError, OSError) as e:
        logger.error(f"Firebase initialization error: {e}")
        _firebase_ready = False
    return _firebase_ready


def verify_bearer_id_token(authorization_header: Optional[str]) -> Optional[dict]:
    """Verify Firebase ID token from Authorization: Bearer <token>.
    Returns decoded token dict on success, or None if not present or Firebase is not configured.
    Raises HTTPException on explicit invalid token.
    """
    if not authorization_header:
        return None
    parts = authorization_header.split()
    if len(parts) != 2 or parts[0].lower() != 'bearer':
        raise HTTPException(status_code=401, detail="Invalid Authorization header")
    if not _init_firebase_if_needed():
        return None
    try:
        return fb_auth.verify_id_token(parts[1])
    except fb_auth.CertificateFetchError as e:
        logger.error(f"Could not fetch token signing certificates: {e}")
        raise HTTPException(status_code=503, detail="Token verification unavailable")
    except (ValueError, FirebaseError) as e:
        logger.warning(f"Rejected ID token: {e}")
        raise HTTPException(status_code=401, detail="Invalid ID token")


def caller_from_claims(decoded: dict) -> Caller:
    """Build the caller from the `staff_id` and `role` custom claims of a verified token."""
    staff_id = decoded.get('staff_id')
    if staff_id is None:
        raise HTTPException(status_code=403, detail="Token has no staff_id claim")
    try:
        role = Role.parse(decoded.get('role'))
    except ValueError:
        logger.warning(f"Unknown role claim {decoded.get('role')!r} for staff {staff_id}")
        raise HTTPException(status_code=403, detail="Unknown role")
    try:
        caller_id = int(staff_id)
    except (TypeError, ValueError):
        logger.warning(f"Non-numeric staff_id claim {staff_id!r}")
        raise HTTPException(status_code=403, detail="Invalid staff_id claim")
    return Caller(id=caller_id, role=role)


def get_caller(authorization: Optional[str] = Header(default=None)) -> Caller:
    """FastAPI dependency resolving the authenticated caller."""
    decoded = verify_bearer_id_token(authorization)
    if not decoded:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return caller_from_claims(decoded)
