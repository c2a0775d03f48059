"""
Centralized configuration using Pydantic Settings.
Loads from environment variables and .env file.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional


class Settings(BaseSettings):
    """
    Application settings with environment variable support.
    """
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Application
    APP_NAME: str = "leitor-faturas-at"
    APP_VERSION: str = "0.3.0"
    DEBUG: bool = False

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: Optional[str] = None

    # API
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8000
    API_MAX_UPLOAD_SIZE_MB: int = 50
    ALLOWED_UPLOAD_EXTENSIONS: list[str] = [".xml", ".csv"]

    # Invoice Store
    DATA_FILE: str = "data/invoices.json"

    # Regras de negócio
    DUE_DATE_DAYS: int = 30
    CSV_DELIMITER: str = ","

    # SAF-T export (bloco Header)
    SAFT_COMPANY_ID: str = "ARELUNA"
    SAFT_COMPANY_NAME: str = "Grupo AreLuna"
    SAFT_BUSINESS_NAME: str = "AreLuna"
    SAFT_TAX_REGISTRATION_NUMBER: str = "999999999"
    SAFT_ADDRESS_DETAIL: str = "Rua Principal, 123"
    SAFT_CITY: str = "Lisboa"
    SAFT_POSTAL_CODE: str = "1000-000"
    SAFT_COUNTRY: str = "PT"
    SAFT_PRODUCT_ID: str = "AreLuna Invoice Reader"
    SAFT_PRODUCT_VERSION: str = "1.0"

    @property
    def max_upload_size_bytes(self) -> int:
        """Convert MB to bytes."""
        return self.API_MAX_UPLOAD_SIZE_MB * 1024 * 1024


# Global settings instance
settings = Settings()
