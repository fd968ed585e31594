from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    database_url: str = "postgresql+psycopg://dropship@localhost:5432/dropship"
    log_level: str = "INFO"

    supplier_api_base_url: str = "https://developers.cjdropshipping.com/api2.0/v1"
    supplier_api_key: str = ""
    supplier_timeout: float = 60.0
    supplier_connect_timeout: float = 10.0
    supplier_min_request_interval: float = 3.0  # supplier QPS limit
    supplier_rate_limit_backoff: float = 3.0
    supplier_rate_limit_codes: list[int] = [429, 1600200]
    supplier_token_refresh_margin: int = 120  # refresh 2 minutes before expiry
    supplier_auth_min_interval: float = 300.0  # auth endpoint allows 1 call per 300s

    catalog_page_size: int = 200
    catalog_max_pages: int = 50
    catalog_auto_activate: bool = False
    catalog_require_weight: bool = True
    catalog_freight_country: str = "US"

    fulfillment_logistic_name: str = "USPS+"
    fulfillment_origin_country: str = "US"
    fulfillment_pay_type: int = 2

    review_sync_delay: float = 1.2
    review_sync_page_size: int = 50
    review_sync_keep: int = 10
    stock_check_delay: float = 1.2

    @field_validator("database_url")
    @classmethod
    def validate_db_url(cls, v: str) -> str:
        if v and not v.startswith(("postgresql", "sqlite")):
            raise ValueError("DB URL must start with 'postgresql' or 'sqlite'")
        return v

    @field_validator("supplier_api_base_url")
    @classmethod
    def validate_http_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("URL must start with 'http://' or 'https://'")
        return v.rstrip("/")

    @field_validator(
        "supplier_min_request_interval",
        "supplier_rate_limit_backoff",
        "supplier_auth_min_interval",
        "review_sync_delay",
        "stock_check_delay",
    )
    @classmethod
    def validate_non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("delay must be zero or positive")
        return v

    @field_validator("catalog_page_size")
    @classmethod
    def validate_page_size(cls, v: int) -> int:
        if not 1 <= v <= 200:
            raise ValueError("catalog_page_size must be between 1 and 200")
        return v

    model_config = SettingsConfigDict(env_file=".env", extra="ignore", case_sensitive=False)


settings = Settings()
