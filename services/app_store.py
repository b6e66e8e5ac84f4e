# services/app_store.py
"""
App Store server notifications: verify the signedPayload, then dispatch.

Config (env or Flask config), loaded once by create_app() via load_verification_settings():
  APPSTORE_VERIFY_KEY              PEM public key (HS* secret in dev) for the JWS signature
  APPSTORE_VERIFY_KEY_PATH         same, read from a file
  APPSTORE_ALGORITHMS              allowed algs, default ["ES256"]
  APPSTORE_ROOT_CERT_PATH          pinned root; when set, payloads with an x5c header are
                                   verified with the leaf cert after the chain checks out
  APPSTORE_LEAF_CERT_OID           marker extension the leaf must carry ("" disables)
  APPSTORE_INTERMEDIATE_CERT_OID   marker extension every intermediate must carry ("" disables)
  APPSTORE_BUNDLE_ID               optional; data.bundleId must match

Nothing is trusted from the token until the signature verifies. The handlers
only log for now: no persistence, no dedup (a replay is logged again).
"""
from __future__ import annotations

import base64
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Mapping, Optional

import jwt
from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from flask import current_app

SUBSCRIBED = "SUBSCRIBED"
DID_RENEW = "DID_RENEW"
DID_FAIL_TO_RENEW = "DID_FAIL_TO_RENEW"
EXPIRED = "EXPIRED"

ENVIRONMENTS = ("production", "sandbox")

# Apple's marker extensions on the notification signing chain
APPLE_LEAF_OID = "1.2.840.113635.100.6.11.1"
APPLE_INTERMEDIATE_OID = "1.2.840.113635.100.6.2.1"


class NotificationDecodeError(ValueError):
    """signedPayload missing a valid signature, malformed, or for the wrong app/environment."""


# ------------------ config (loaded at startup) ------------------

@dataclass(frozen=True)
class VerificationSettings:
    key: Any = None
    algorithms: tuple[str, ...] = ("ES256",)
    root: Optional[x509.Certificate] = None
    leaf_oid: Optional[str] = APPLE_LEAF_OID
    intermediate_oid: Optional[str] = APPLE_INTERMEDIATE_OID


def _read_bytes(path: str, name: str) -> bytes:
    try:
        with open(path, "rb") as fh:
            return fh.read()
    except OSError as e:
        raise RuntimeError(f"{name} {path!r} not readable: {e}") from e


def _load_key(config: Mapping[str, Any]) -> Any:
    key = (config.get("APPSTORE_VERIFY_KEY") or "").strip()
    path = (config.get("APPSTORE_VERIFY_KEY_PATH") or "").strip()
    if not key and path:
        key = _read_bytes(path, "APPSTORE_VERIFY_KEY_PATH").decode("utf-8").strip()
    if not key:
        return None
    if key.startswith("-----BEGIN"):
        try:
            return serialization.load_pem_public_key(key.encode())
        except ValueError as e:
            raise RuntimeError(f"APPSTORE_VERIFY_KEY is not a valid PEM public key: {e}") from e
    # HS* shared secret
    return key


def _load_root(config: Mapping[str, Any]) -> Optional[x509.Certificate]:
    path = (config.get("APPSTORE_ROOT_CERT_PATH") or "").strip()
    if not path:
        return None
    raw = _read_bytes(path, "APPSTORE_ROOT_CERT_PATH")
    try:
        if b"-----BEGIN CERTIFICATE-----" in raw:
            return x509.load_pem_x509_certificate(raw)
        return x509.load_der_x509_certificate(raw)
    except ValueError as e:
        raise RuntimeError(f"APPSTORE_ROOT_CERT_PATH {path!r} is not a certificate: {e}") from e


def _oid(config: Mapping[str, Any], name: str, default: str) -> Optional[str]:
    value = config.get(name, default)
    value = (value or "").strip()
    return value or None


def load_verification_settings(config: Mapping[str, Any]) -> VerificationSettings:
    """Read key/root/algs once. Missing or unparseable files fail app start (RuntimeError)."""
    algs = config.get("APPSTORE_ALGORITHMS") or ["ES256"]
    if isinstance(algs, str):
        algs = [a.strip() for a in algs.split(",") if a.strip()]
    return VerificationSettings(
        key=_load_key(config),
        algorithms=tuple(algs),
        root=_load_root(config),
        leaf_oid=_oid(config, "APPSTORE_LEAF_CERT_OID", APPLE_LEAF_OID),
        intermediate_oid=_oid(config, "APPSTORE_INTERMEDIATE_CERT_OID", APPLE_INTERMEDIATE_OID),
    )


# ------------------ verification ------------------

def _subject(cert: x509.Certificate) -> str:
    return cert.subject.rfc4514_string()


def _check_validity(cert: x509.Certificate, now: datetime) -> None:
    if not (cert.not_valid_before_utc <= now <= cert.not_valid_after_utc):
        raise NotificationDecodeError(f"certificate not valid at {now.isoformat()}: {_subject(cert)}")


def _require_ca(cert: x509.Certificate, cas_below: int) -> None:
    """`cert` issues another cert in the path; `cas_below` intermediates sit under it."""
    try:
        bc = cert.extensions.get_extension_for_class(x509.BasicConstraints).value
    except x509.ExtensionNotFound:
        bc = None
    if bc is None or not bc.ca:
        raise NotificationDecodeError(f"issuer is not a CA: {_subject(cert)}")
    if bc.path_length is not None and cas_below > bc.path_length:
        raise NotificationDecodeError(f"path length exceeded under {_subject(cert)}")

    try:
        ku = cert.extensions.get_extension_for_class(x509.KeyUsage).value
    except x509.ExtensionNotFound:
        return
    if not ku.key_cert_sign:
        raise NotificationDecodeError(f"issuer may not sign certificates: {_subject(cert)}")


def _require_marker(cert: x509.Certificate, oid: str, role: str) -> None:
    try:
        cert.extensions.get_extension_for_oid(x509.ObjectIdentifier(oid))
    except x509.ExtensionNotFound:
        raise NotificationDecodeError(f"{role} certificate lacks marker {oid}: {_subject(cert)}") from None


def key_from_x5c(
    x5c: Any,
    root: x509.Certificate,
    now: Optional[datetime] = None,
    leaf_oid: Optional[str] = APPLE_LEAF_OID,
    intermediate_oid: Optional[str] = APPLE_INTERMEDIATE_OID,
):
    """
    Build the path leaf -> intermediates -> pinned root from the x5c header
    (the root entry itself is optional) and check it: every issuer is a CA
    allowed to sign certs, every signature verifies, every cert is in date,
    and the leaf/intermediates carry their marker extensions.
    Returns the leaf public key.
    """
    if not isinstance(x5c, list) or not x5c:
        raise NotificationDecodeError("x5c header must be a non-empty list")
    now = now or datetime.now(timezone.utc)

    try:
        chain = [x509.load_der_x509_certificate(base64.b64decode(c)) for c in x5c]
    except (ValueError, TypeError) as e:
        raise NotificationDecodeError(f"certificate chain rejected: {e}") from e

    root_fp = root.fingerprint(hashes.SHA256())
    if chain[-1].fingerprint(hashes.SHA256()) == root_fp:
        chain = chain[:-1]
    if not chain:
        raise NotificationDecodeError("x5c holds no certificate below the root")
    if any(c.fingerprint(hashes.SHA256()) == root_fp for c in chain):
        raise NotificationDecodeError("root certificate may only appear last in x5c")
    path = chain + [root]

    try:
        for cas_below, (child, parent) in enumerate(zip(path, path[1:])):
            _require_ca(parent, cas_below)
            child.verify_directly_issued_by(parent)
    except NotificationDecodeError:
        raise
    except (ValueError, TypeError, InvalidSignature) as e:
        raise NotificationDecodeError(f"certificate chain rejected: {e}") from e

    leaf, intermediates = path[0], path[1:-1]
    if leaf_oid:
        _require_marker(leaf, leaf_oid, "leaf")
    if intermediate_oid:
        if not intermediates:
            raise NotificationDecodeError("certificate chain has no intermediate")
        for cert in intermediates:
            _require_marker(cert, intermediate_oid, "intermediate")

    for cert in path:
        _check_validity(cert, now)
    return leaf.public_key()


def decode_signed_payload(
    token: str,
    key: Any = None,
    algorithms: Optional[list[str]] = None,
    root: Optional[x509.Certificate] = None,
    leaf_oid: Optional[str] = APPLE_LEAF_OID,
    intermediate_oid: Optional[str] = APPLE_INTERMEDIATE_OID,
) -> Dict[str, Any]:
    """Verified decode of the JWS. Raises NotificationDecodeError on any failure."""
    algorithms = list(algorithms or ["ES256"])
    if not isinstance(token, str) or not token.strip():
        raise NotificationDecodeError("Missing signed payload")

    try:
        header = jwt.get_unverified_header(token)
    except jwt.InvalidTokenError as e:
        raise NotificationDecodeError(f"Invalid JWT format: {e}") from e

    if header.get("alg") not in algorithms:
        raise NotificationDecodeError(f"algorithm {header.get('alg')!r} not allowed")

    if root is not None and header.get("x5c"):
        verify_with = key_from_x5c(
            header["x5c"], root, leaf_oid=leaf_oid, intermediate_oid=intermediate_oid,
        )
    elif key:
        verify_with = key
    else:
        raise NotificationDecodeError("no verification key configured")

    try:
        payload = jwt.decode(token, verify_with, algorithms=algorithms)
    except jwt.InvalidTokenError as e:
        raise NotificationDecodeError(f"signature verification failed: {e}") from e

    if not isinstance(payload, dict):
        raise NotificationDecodeError("payload must be a JSON object")
    return payload


def verify_notification(signed_payload: str, environment: str) -> Dict[str, Any]:
    """
    Decode with the startup-loaded key/root, then check the claims we can check:
    bundleId (if configured) and data.environment against the route label.
    """
    settings: VerificationSettings = current_app.extensions["appstore_verification"]
    notification = decode_signed_payload(
        signed_payload,
        key=settings.key,
        algorithms=list(settings.algorithms),
        root=settings.root,
        leaf_oid=settings.leaf_oid,
        intermediate_oid=settings.intermediate_oid,
    )

    data = notification.get("data")
    if data is not None and not isinstance(data, dict):
        raise NotificationDecodeError("data must be an object")
    data = data or {}

    bundle_id = (current_app.config.get("APPSTORE_BUNDLE_ID") or "").strip()
    if bundle_id and data.get("bundleId") != bundle_id:
        raise NotificationDecodeError(f"bundleId mismatch: {data.get('bundleId')!r}")

    claimed_env = data.get("environment")
    if claimed_env and str(claimed_env).lower() != environment:
        raise NotificationDecodeError(f"{claimed_env} notification sent to {environment} endpoint")

    return notification


# ------------------ handlers ------------------

def _fields(notification: Dict[str, Any], extra: str) -> Dict[str, Any]:
    data = notification.get("data") or {}
    return {
        "originalTransactionId": data.get("originalTransactionId"),
        "productId": data.get("productId"),
        extra: data.get(extra),
    }


def handle_subscription(notification: Dict[str, Any], environment: str) -> None:
    current_app.logger.info("[%s] New subscription: %s", environment, _fields(notification, "purchaseDate"))


def handle_renewal(notification: Dict[str, Any], environment: str) -> None:
    current_app.logger.info("[%s] Subscription renewed: %s", environment, _fields(notification, "renewalDate"))


def handle_failed_renewal(notification: Dict[str, Any], environment: str) -> None:
    current_app.logger.info("[%s] Renewal failed: %s", environment, _fields(notification, "expirationIntent"))


def handle_expiration(notification: Dict[str, Any], environment: str) -> None:
    current_app.logger.info("[%s] Subscription expired: %s", environment, _fields(notification, "expirationDate"))


HANDLERS: Dict[str, Callable[[Dict[str, Any], str], None]] = {
    SUBSCRIBED: handle_subscription,
    DID_RENEW: handle_renewal,
    DID_FAIL_TO_RENEW: handle_failed_renewal,
    EXPIRED: handle_expiration,
}


def dispatch(notification: Dict[str, Any], environment: str) -> Optional[str]:
    """Run the handler for notificationType. Returns its type, or None if unhandled."""
    ntype = notification.get("notificationType")
    handler = HANDLERS.get(ntype) if isinstance(ntype, str) else None
    if handler is None:
        current_app.logger.info("[%s] Unhandled notification type: %s", environment, ntype)
        return None
    handler(notification, environment)
    return ntype
