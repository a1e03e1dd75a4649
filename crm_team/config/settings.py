"""Settings loader with environment variable and Docker secrets integration."""
from __future__ import annotations
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


def _load_secret_from_file(secret_name: str, env_var: str | None = None) -> str | None:
    """
    Load secret from /run/secrets (Docker secrets pattern).

    Priority:
    1. /run/secrets/{secret_name} (Docker secrets mount)
    2. Environment variable (fallback)

    Args:
        secret_name: Name of the secret file in /run/secrets
        env_var: Optional environment variable name to check as fallback

    Returns:
        Secret value or None if not found
    """
    secret_file = Path("/run/secrets") / secret_name

    if secret_file.exists() and secret_file.is_file():
        try:
            secret_value = secret_file.read_text().strip()
            if secret_value:
                logger.info("Loaded %s from /run/secrets", secret_name)
                return secret_value
        except OSError as exc:
            logger.warning("Failed to read /run/secrets/%s: %s", secret_name, exc)

    if env_var:
        secret_value = os.getenv(env_var)
        if secret_value:
            return secret_value

    return None


@dataclass(frozen=True)
class TeamConfig:
    """Configuration value object built once at startup.

    Passed by reference into every client and service constructor.
    """
    demo_mode: bool = False

    # Identity provider (Keycloak Admin API)
    idp_base_url: str = "http://localhost:8080"
    idp_realm: str = "crm"
    idp_service_realm: str = "crm"
    idp_service_client_id: str = "crm-team-automation"
    idp_service_client_secret: str = ""
    idp_page_size: int = 200
    require_password_update: bool = True

    # Membership store (PostgREST)
    membership_store_url: str = "http://localhost:54321"
    membership_store_service_key: str = ""
    membership_schema: str = "heart"
    membership_table: str = "team_members"
    membership_page_size: int = 500

    # Shared
    request_timeout: float = 5.0
    secret_length: int = 12

    # Audit
    audit_log_dir: str = ".runtime/audit"
    audit_log_signing_key: str = ""


def _get_or_default(var_name: str, demo_default: Optional[str] = None, required: bool = True, demo_mode: bool = False) -> str:
    """Get environment variable (or Docker secret) or use the demo default."""
    value = _load_secret_from_file(var_name.lower(), var_name)
    if value:
        return value

    if demo_mode and demo_default is not None:
        logger.info("[demo-mode] Using default for %s", var_name)
        return demo_default

    if not required:
        return ""

    raise RuntimeError(f"Environment variable {var_name} is required in production mode.")


def _env_bool(var_name: str, default: bool) -> bool:
    return os.environ.get(var_name, str(default)).strip().lower() == "true"


def load_settings() -> TeamConfig:
    """Load team lifecycle settings from environment and /run/secrets."""
    demo_mode = _env_bool("DEMO_MODE", False)

    idp_base_url = os.environ.get("IDP_BASE_URL", "http://localhost:8080" if demo_mode else "")
    if not idp_base_url:
        raise RuntimeError("Environment variable IDP_BASE_URL is required in production mode.")
    idp_realm = os.environ.get("IDP_REALM", "crm")
    idp_service_realm = os.environ.get("IDP_SERVICE_REALM", idp_realm)

    idp_service_client_id = _get_or_default(
        "IDP_SERVICE_CLIENT_ID",
        demo_default="crm-team-automation",
        demo_mode=demo_mode,
    )
    idp_service_client_secret = _get_or_default(
        "IDP_SERVICE_CLIENT_SECRET",
        demo_default="demo-service-secret",
        demo_mode=demo_mode,
    )

    membership_store_url = _get_or_default(
        "MEMBERSHIP_STORE_URL",
        demo_default="http://localhost:54321",
        demo_mode=demo_mode,
    )
    membership_store_service_key = _get_or_default(
        "MEMBERSHIP_STORE_SERVICE_KEY",
        demo_default="demo-service-key",
        demo_mode=demo_mode,
    )

    audit_log_signing_key = _get_or_default(
        "AUDIT_LOG_SIGNING_KEY",
        demo_default="demo-audit-signing-key-change-in-production",
        required=False,
        demo_mode=demo_mode,
    )

    config = TeamConfig(
        demo_mode=demo_mode,
        idp_base_url=idp_base_url.rstrip("/"),
        idp_realm=idp_realm,
        idp_service_realm=idp_service_realm,
        idp_service_client_id=idp_service_client_id,
        idp_service_client_secret=idp_service_client_secret,
        idp_page_size=int(os.environ.get("IDP_PAGE_SIZE", "200")),
        require_password_update=_env_bool("REQUIRE_PASSWORD_UPDATE", True),
        membership_store_url=membership_store_url.rstrip("/"),
        membership_store_service_key=membership_store_service_key,
        membership_schema=os.environ.get("MEMBERSHIP_SCHEMA", "heart"),
        membership_table=os.environ.get("MEMBERSHIP_TABLE", "team_members"),
        membership_page_size=int(os.environ.get("MEMBERSHIP_PAGE_SIZE", "500")),
        request_timeout=float(os.environ.get("REQUEST_TIMEOUT", "5")),
        secret_length=int(os.environ.get("SECRET_LENGTH", "12")),
        audit_log_dir=os.environ.get("AUDIT_LOG_DIR", ".runtime/audit"),
        audit_log_signing_key=audit_log_signing_key,
    )

    mode_label = "DEMO" if demo_mode else "PRODUCTION"
    logger.info("Mode=%s; realm=%s; membership=%s.%s", mode_label, idp_realm, config.membership_schema, config.membership_table)
    if demo_mode:
        logger.warning("[demo-mode] Demo credentials in use. Do not deploy with these defaults.")

    return config
