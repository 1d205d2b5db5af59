"""
Settings for Group Ledger

Every tunable lives here and is read from the environment (or `.env`)
through pydantic-settings. Sections load lazily, so a deployment without
Google Sheets credentials still gets ledger settings and runs in memory.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LedgerSettings(BaseSettings):
    """Balance, settlement and validation thresholds."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_",
        extra="ignore"
    )

    settlement_epsilon: float = Field(
        default=0.01,
        gt=0.0,
        le=1.0,
        description="Balances and payments below this magnitude count as settled"
    )
    split_tolerance: float = Field(
        default=0.1,
        ge=0.0,
        description="Allowed gap between the sum of splits and the entry amount"
    )
    overpayment_buffer: float = Field(
        default=10.0,
        ge=0.0,
        description="Settle-ups exceeding the computed debt by more than this get a warning"
    )
    default_currency: str = Field(
        default="INR",
        min_length=3,
        max_length=3,
        description="Currency for new groups"
    )
    currency_symbol: str = Field(
        default="₹",
        description="Symbol used when formatting settlement suggestions"
    )



class GoogleSheetsSettings(BaseSettings):
    """Where groups, entries and the audit trail are persisted."""

    model_config = SettingsConfigDict(
        env_prefix="GOOGLE_SHEETS_",
        extra="ignore"
    )

    credentials_path: str = Field(
        ...,
        description="Service account key file used to authorize gspread"
    )
    spreadsheet_id: str = Field(
        ...,
        description="Spreadsheet holding the ledger worksheets"
    )

    # One worksheet per record type
    groups_sheet_name: str = Field(
        default="Groups",
        description="Worksheet with one row per group and its members"
    )
    entries_sheet_name: str = Field(
        default="Entries",
        description="Worksheet with one row per ledger entry"
    )
    audit_sheet_name: str = Field(
        default="AuditLog",
        description="Worksheet with one row per audit event"
    )

    @field_validator('credentials_path')
    @classmethod
    def check_credentials_file(cls, v: str) -> str:
        """A missing key file only warns; it may be mounted after startup."""
        if not Path(v).exists():
            import warnings
            warnings.warn(
                f"No service account key at {v}; "
                "Google Sheets storage will fail to connect until it exists."
            )
        return v


class AppSettings(BaseSettings):
    """Process-wide switches, also read from `.env`."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    app_environment: str = Field(
        default="development",
        description="Deployment name (development, staging, production)"
    )
    debug_mode: bool = Field(
        default=False,
        description="Verbose logging and tracebacks"
    )
    use_google_sheets: bool = Field(
        default=True,
        description="Persist to Google Sheets when it is configured"
    )


class Settings(BaseSettings):
    """All settings sections, each built on first access."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    @property
    def ledger(self) -> LedgerSettings:
        return LedgerSettings()

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Shared settings instance.

    Tests that change the environment call get_settings.cache_clear().
    """
    return Settings()


_SECTIONS = ("ledger", "google_sheets", "app")


def validate_all_settings() -> dict[str, bool]:
    """
    Try to load every settings section.

    Returns {section: loaded_ok}, plus "<section>_error" with the message
    for each section that failed. Nothing is raised.
    """
    settings = get_settings()
    results = {}

    for section in _SECTIONS:
        try:
            getattr(settings, section)
        except Exception as e:
            results[section] = False
            results[f"{section}_error"] = str(e)
        else:
            results[section] = True

    return results
