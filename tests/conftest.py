"""Shared fixtures: app on in-memory SQLite, test client, ES256 signing keys."""

from __future__ import annotations

import base64
from datetime import datetime, timedelta, timezone

import jwt
import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from app import create_app, db
from services.app_store import APPLE_INTERMEDIATE_OID, APPLE_LEAF_OID


def public_pem(private_key) -> str:
    return private_key.public_key().public_bytes(
        serialization.Encoding.PEM,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode()


@pytest.fixture(scope="session")
def signing_key():
    """EC P-256 private key standing in for the App Store signing key."""
    return ec.generate_private_key(ec.SECP256R1())


@pytest.fixture()
def make_app(signing_key):
    """make_app(**overrides) -> app on in-memory SQLite, verifying with signing_key."""
    made = []

    def _make(**overrides):
        cfg = {
            "TESTING": True,
            "APP_ENV": "development",
            "SQLALCHEMY_DATABASE_URI": "sqlite://",
            "LOG_DIR": "",
            "APPSTORE_VERIFY_KEY": public_pem(signing_key),
            "APPSTORE_VERIFY_KEY_PATH": "",
            "APPSTORE_ALGORITHMS": ["ES256"],
            "APPSTORE_BUNDLE_ID": "",
            "APPSTORE_ROOT_CERT_PATH": "",
        }
        cfg.update(overrides)
        app = create_app(cfg)
        made.append(app)
        return app

    yield _make
    for app in made:
        with app.app_context():
            db.session.remove()
            db.drop_all()


@pytest.fixture()
def app(make_app):
    return make_app()


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def sign(signing_key):
    """sign(payload, key=None, headers=None) -> ES256 JWS."""

    def _sign(payload: dict, key=None, headers: dict | None = None) -> str:
        return jwt.encode(payload, key or signing_key, algorithm="ES256", headers=headers)

    return _sign


def make_notification(notification_type: str, **data) -> dict:
    body = {
        "originalTransactionId": "1000000123",
        "productId": "com.securekiosk.pro.monthly",
        "bundleId": "com.securekiosk.app",
    }
    body.update(data)
    return {
        "notificationType": notification_type,
        "notificationUUID": "6b8a0c2e-4f9d-4d7e-9a3b-1f2e3d4c5b6a",
        "data": body,
    }


# ── Certificates for x5c chains ───────────────────────────────────────────


def _name(cn: str) -> x509.Name:
    return x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, cn)])


def make_cert(
    subject_key,
    subject_cn: str,
    issuer_key,
    issuer_cn: str,
    ca: bool,
    markers: tuple[str, ...] = (),
    cert_sign: bool | None = None,
    basic_constraints: bool = True,
) -> x509.Certificate:
    """Cert for subject_key signed by issuer_key; `markers` adds bare marker extensions."""
    now = datetime.now(timezone.utc)
    builder = (
        x509.CertificateBuilder()
        .subject_name(_name(subject_cn))
        .issuer_name(_name(issuer_cn))
        .public_key(subject_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=30))
    )
    if basic_constraints:
        builder = builder.add_extension(x509.BasicConstraints(ca=ca, path_length=None), critical=True)
    if cert_sign is not None:
        builder = builder.add_extension(
            x509.KeyUsage(
                digital_signature=True, content_commitment=False, key_encipherment=False,
                data_encipherment=False, key_agreement=False, key_cert_sign=cert_sign,
                crl_sign=cert_sign, encipher_only=False, decipher_only=False,
            ),
            critical=True,
        )
    for oid in markers:
        builder = builder.add_extension(
            x509.UnrecognizedExtension(x509.ObjectIdentifier(oid), b"\x05\x00"), critical=False,
        )
    return builder.sign(issuer_key, hashes.SHA256())


def x5c_entry(cert: x509.Certificate) -> str:
    return base64.b64encode(cert.public_bytes(serialization.Encoding.DER)).decode()


class Chain:
    """root -> intermediate -> leaf, minted the way Apple's signing chain is marked."""

    def __init__(self):
        self.root_key = ec.generate_private_key(ec.SECP256R1())
        self.root = make_cert(self.root_key, "Test Root CA", self.root_key, "Test Root CA",
                              ca=True, cert_sign=True)
        self.intermediate_key = ec.generate_private_key(ec.SECP256R1())
        self.intermediate = make_cert(
            self.intermediate_key, "Test WWDR CA", self.root_key, "Test Root CA",
            ca=True, cert_sign=True, markers=(APPLE_INTERMEDIATE_OID,),
        )
        self.leaf_key = ec.generate_private_key(ec.SECP256R1())
        self.leaf = make_cert(
            self.leaf_key, "Test Notification Signer", self.intermediate_key, "Test WWDR CA",
            ca=False, cert_sign=False, markers=(APPLE_LEAF_OID,),
        )

    def x5c(self, *certs: x509.Certificate) -> list[str]:
        return [x5c_entry(c) for c in (certs or (self.leaf, self.intermediate, self.root))]

    def root_pem(self) -> bytes:
        return self.root.public_bytes(serialization.Encoding.PEM)


@pytest.fixture(scope="session")
def cert_chain() -> Chain:
    return Chain()
