# config.py
"""
Runtime configuration, loaded by create_app() via app.config.from_object("config").
Everything is read from the environment so the same build runs locally and on Render.
"""
import os


def _flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


BASE_DIR = os.path.dirname(os.path.abspath(__file__))

# ----- Server -----
PORT = int(os.getenv("PORT", "8080"))
APP_ENV = (os.getenv("APP_ENV") or os.getenv("FLASK_ENV") or "development").strip().lower()

# Production hides internal error detail from clients
EXPOSE_ERROR_DETAIL = APP_ENV != "production"

# ----- Database -----
SQLALCHEMY_DATABASE_URI = (
    os.getenv("SQLALCHEMY_DATABASE_URI")
    or os.getenv("DATABASE_URL")
    or "sqlite:///" + os.path.join(BASE_DIR, "securekiosk.db")
)
SQLALCHEMY_TRACK_MODIFICATIONS = False
SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True}

# ----- Services on/off -----
NOTIFICATIONS_ENABLED = _flag("NOTIFICATIONS_ENABLED", True)
ADBLOCK_ENABLED = _flag("ADBLOCK_ENABLED", True)

# ----- App Store server notifications -----
# PEM public key (or HMAC secret for HS* algorithms) used to verify signedPayload
APPSTORE_VERIFY_KEY = os.getenv("APPSTORE_VERIFY_KEY", "")
APPSTORE_VERIFY_KEY_PATH = os.getenv("APPSTORE_VERIFY_KEY_PATH", "")
APPSTORE_ALGORITHMS = [
    a.strip() for a in os.getenv("APPSTORE_ALGORITHMS", "ES256").split(",") if a.strip()
]
APPSTORE_BUNDLE_ID = os.getenv("APPSTORE_BUNDLE_ID", "")
# Pinned root certificate (PEM or DER) for payloads carrying an x5c chain
APPSTORE_ROOT_CERT_PATH = os.getenv("APPSTORE_ROOT_CERT_PATH", "")
# Marker extensions required on the x5c leaf / intermediates ("" disables the check)
APPSTORE_LEAF_CERT_OID = os.getenv("APPSTORE_LEAF_CERT_OID", "1.2.840.113635.100.6.11.1")
APPSTORE_INTERMEDIATE_CERT_OID = os.getenv("APPSTORE_INTERMEDIATE_CERT_OID", "1.2.840.113635.100.6.2.1")

# ----- Ad-block rules -----
ADBLOCK_DEFAULT_RULES_PATH = os.getenv(
    "ADBLOCK_DEFAULT_RULES_PATH",
    os.path.join(BASE_DIR, "adblock", "default_rules.json"),
)

# ----- Logging -----
LOG_DIR = os.getenv("LOG_DIR", os.path.join(BASE_DIR, "logs"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
