from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    APP_NAME: str = "Furniture Back-office"
    DATABASE_URL: str = "sqlite:///./backoffice.db"
    SQL_ECHO: bool = False
    LOG_LEVEL: str = "INFO"

    # Auth
    SECRET_KEY: str = "change-me"
    ACCESS_TOKEN_EXPIRE_HOURS: int = 72
    DEFAULT_ADMIN_USERNAME: str = "admin"
    DEFAULT_ADMIN_PASSWORD: str = "admin"

    # Stock ledger
    LOW_STOCK_THRESHOLD: int = 10
    STOCK_UPDATE_MAX_ATTEMPTS: int = 5

    # Pricing
    DEFAULT_TAX_RATE: float = 0.0
    # Cost used for composite products that have no explicit cost
    COMPOSITE_COST_RATIO: float = 0.6

    # Invoices
    INVOICE_DUE_DAYS: int = 30

    # Business identifiers: PREFIX-YEAR-NNNNNN
    ORDER_NUMBER_PREFIX: str = "ORD"
    INVOICE_NUMBER_PREFIX: str = "INV"
    NUMBER_PAD_WIDTH: int = 6
    NUMBER_MAX_ATTEMPTS: int = 5

    # Retry on lock / deadlock errors
    DB_RETRY_ATTEMPTS: int = 3
    DB_RETRY_BACKOFF: float = 0.05

    JOB_MAX_RETRIES: int = 3

    model_config = {"env_file": ".env"}


settings = Settings()
