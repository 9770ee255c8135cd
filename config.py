"""
Central configuration for the purchase-order back office.

All paths, storage, e-mail and document settings are defined here.
Override via environment variables or by passing a Config instance directly.

Settings priority (highest wins):
  1. config/app_settings.json  (admin-editable, persisted)
  2. Environment variables
  3. Hardcoded defaults in this file
"""
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

# Project root (directory containing this file)
PROJECT_ROOT = Path(__file__).parent

# Default data locations (relative to project root)
DEFAULT_DATA_DIR    = PROJECT_ROOT / "data"
DEFAULT_DB_PATH     = DEFAULT_DATA_DIR / "buildlite.db"
DEFAULT_CONFIG_DIR  = PROJECT_ROOT / "config"
DEFAULT_BACKUP_DIR  = PROJECT_ROOT / "backups"

SETTINGS_FILE_NAME = "app_settings.json"
COST_CODES_FILE_NAME = "cost_codes.json"


def _env_list(name: str) -> list[str]:
    return [s.strip() for s in os.getenv(name, "").split(",") if s.strip()]


def _env_path(name: str) -> Optional[Path]:
    value = os.getenv(name)
    return Path(value) if value else None


def _as_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def _as_list(value) -> list[str]:
    if isinstance(value, str):
        value = value.split(",")
    return [str(v).strip() for v in value if str(v).strip()]


@dataclass
class Config:
    # --- Storage ---
    # storage_backend="sqlite" → procurement.database.Database   (default)
    # storage_backend="json"   → procurement.json_store.JsonFileStore
    storage_backend: str = field(
        default_factory=lambda: os.getenv("STORAGE_BACKEND", "sqlite").lower()
    )
    db_path: Path = field(
        default_factory=lambda: Path(os.getenv("DB_PATH", str(DEFAULT_DB_PATH)))
    )
    data_dir: Path = field(
        default_factory=lambda: Path(os.getenv("DATA_DIR", str(DEFAULT_DATA_DIR)))
    )
    config_dir: Path = field(
        default_factory=lambda: Path(os.getenv("CONFIG_DIR", str(DEFAULT_CONFIG_DIR)))
    )
    # Tenant whose records every service reads and writes
    active_client: str = field(
        default_factory=lambda: os.getenv("ACTIVE_CLIENT", "default")
    )

    # --- Orders ---
    default_vat_rate: float = field(
        default_factory=lambda: float(os.getenv("DEFAULT_VAT_RATE", "0.2"))
    )
    allow_credit_lines: bool = field(
        default_factory=lambda: os.getenv("ALLOW_CREDIT_LINES", "false").lower() == "true"
    )
    cost_codes_path: Optional[Path] = field(
        default_factory=lambda: _env_path("COST_CODES_PATH")
    )

    # --- E-mail (approval requests and decisions) ---
    smtp_host: str = field(default_factory=lambda: os.getenv("SMTP_HOST", ""))
    smtp_port: int = field(default_factory=lambda: int(os.getenv("SMTP_PORT", "587")))
    smtp_user: str = field(default_factory=lambda: os.getenv("SMTP_USER", ""))
    smtp_pass: str = field(default_factory=lambda: os.getenv("SMTP_PASS", ""))
    smtp_starttls: bool = field(
        default_factory=lambda: os.getenv("SMTP_STARTTLS", "true").lower() != "false"
    )
    smtp_timeout: float = field(
        default_factory=lambda: float(os.getenv("SMTP_TIMEOUT", "10"))
    )
    from_email: str = field(default_factory=lambda: os.getenv("FROM_EMAIL", ""))
    approver_emails: list[str] = field(default_factory=lambda: _env_list("APPROVER_EMAILS"))

    # --- Branding (e-mail subjects and order documents) ---
    app_name: str = field(default_factory=lambda: os.getenv("APP_NAME", "Build Lite"))
    currency_symbol: str = "£"
    company_name: str = field(default_factory=lambda: os.getenv("COMPANY_NAME", "Build Lite Ltd"))
    company_address: str = field(default_factory=lambda: os.getenv("COMPANY_ADDRESS", ""))
    company_phone: str = field(default_factory=lambda: os.getenv("COMPANY_PHONE", ""))
    company_email: str = field(default_factory=lambda: os.getenv("COMPANY_EMAIL", ""))
    company_vat_number: str = field(default_factory=lambda: os.getenv("COMPANY_VAT_NUMBER", ""))
    pdf_cache_size: int = 32        # rendered order documents kept in memory

    # --- Backup settings ---
    backup_dir: Path = field(
        default_factory=lambda: Path(os.getenv("BACKUP_DIR", str(DEFAULT_BACKUP_DIR)))
    )
    backup_retention_count: int = field(
        default_factory=lambda: int(os.getenv("BACKUP_RETENTION_COUNT", "7"))
    )

    def __post_init__(self) -> None:
        self._load_settings_file()
        # Without an explicit path, use the list bootstrap seeds into the config dir
        if not self.cost_codes_path:
            self.cost_codes_path = Path(self.config_dir) / COST_CODES_FILE_NAME

    def _load_settings_file(self) -> None:
        """Overlay runtime-tunable settings from app_settings.json if present."""
        settings_file = Path(self.config_dir) / SETTINGS_FILE_NAME
        if not settings_file.exists():
            return
        _type_map: dict[str, type] = {
            "active_client":          str,
            "cost_codes_path":        Path,
            "default_vat_rate":       float,
            "allow_credit_lines":     _as_bool,
            "smtp_host":              str,
            "smtp_port":              int,
            "smtp_starttls":          _as_bool,
            "smtp_timeout":           float,
            "from_email":             str,
            "approver_emails":        _as_list,
            "app_name":               str,
            "currency_symbol":        str,
            "company_name":           str,
            "company_address":        str,
            "company_phone":          str,
            "company_email":          str,
            "company_vat_number":     str,
            "backup_retention_count": int,
        }
        try:
            with open(settings_file, encoding="utf-8") as f:
                overrides = {k: v for k, v in json.load(f).items() if not k.startswith("_")}
            for key, val in overrides.items():
                if key in _type_map and hasattr(self, key):
                    setattr(self, key, _type_map[key](val))
        except (OSError, ValueError, TypeError, AttributeError) as exc:
            logger.warning("Failed to load %s: %s", SETTINGS_FILE_NAME, exc)

    @property
    def brand(self) -> dict:
        """Company details printed on order documents."""
        return {
            "name":       self.company_name,
            "address":    self.company_address,
            "phone":      self.company_phone,
            "email":      self.company_email,
            "vat_number": self.company_vat_number,
        }

    def ensure_dirs(self) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self.config_dir.mkdir(parents=True, exist_ok=True)
