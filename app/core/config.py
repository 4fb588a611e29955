from decimal import Decimal
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List, Optional
from pydantic import field_validator

class Settings(BaseSettings):
    # Database settings
    POSTGRES_USER: str = 'clinic_user'
    POSTGRES_PASSWORD: str = 'clinic_pass'
    POSTGRES_DB: str = 'clinic_billing'
    POSTGRES_HOST: str = 'postgres'
    POSTGRES_PORT: int = 5432
    DATABASE_URL: Optional[str] = None  # Sobrescribe la URL armada (ej. sqlite:// en tests)

    # Billing settings
    ISV_RATE: Decimal = Decimal('0.15')  # 15% ISV Honduras, constante de despliegue
    RECONCILIATION_TOLERANCE: Decimal = Decimal('0.01')
    MAX_ITEM_QUANTITY: int = 999999
    GENERIC_ITEM_LABEL: str = 'Servicios Médicos'
    EMISOR_NOMBRE: str = 'Clínica Médica, S. DE R. L.'
    RECEIPT_PREFIX: str = 'REC-'

    # Invoice range (CAI) warnings
    RANGE_WARNING_DAYS: int = 15
    RANGE_WARNING_REMAINING: int = 50

    # CORS
    CORS_ORIGINS: List[str] = ["*"]

    # Pagination
    DEFAULT_PAGE_SIZE: int = 20
    MAX_PAGE_SIZE: int = 100

    # Environment
    ENVIRONMENT: str = "development"
    DEBUG: bool = True

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql+psycopg2://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    model_config = SettingsConfigDict(
        extra="allow",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True
    )

    @field_validator("DEBUG", mode="before")
    @classmethod
    def parse_debug(cls, v):
        if isinstance(v, str):
            return v.lower().strip('"').strip("'") in ("true", "1", "yes", "on")
        return bool(v)

    @field_validator("ISV_RATE", mode="after")
    @classmethod
    def validate_isv_rate(cls, v):
        if v < 0 or v >= 1:
            raise ValueError("ISV_RATE debe estar entre 0 y 1")
        return v

settings = Settings()
