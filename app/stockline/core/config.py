from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env")

    APP_NAME: str = "STOCKLINE"
    SECRET_KEY: str = "change-me"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60
    DATABASE_URL: str = "sqlite+pysqlite:///./stockline.db"
    METRICS_ENABLED: bool = True

    MANAGER_ROLES: list[str] = ["super_admin", "super_manager", "warehouse_manager"]
    ADMIN_ROLES: list[str] = ["super_admin", "super_manager"]

    SEVERITY_MEDIUM_ABOVE: float = 1000
    SEVERITY_HIGH_ABOVE: float = 5000
    SEVERITY_CRITICAL_ABOVE: float = 10000

    RISK_HIGH_VALUE_ABOVE: float = 10000
    RISK_HIGH_VALUE_POINTS: int = 35
    RISK_STOCK_LOSS_POINTS: int = 20
    RISK_CRITICAL_SEVERITY_POINTS: int = 25
    RISK_LOCATION_MIN_UNRESOLVED: int = 3
    RISK_LOCATION_POINTS: int = 30
    RISK_PRODUCT_MIN_UNRESOLVED: int = 2
    RISK_PRODUCT_POINTS: int = 20
    RISK_AGE_DAYS_ABOVE: int = 7
    RISK_AGE_POINTS: int = 15
    RISK_HIGH_RISK_SCORE: int = 60
    RISK_MAX_SCORE: int = 100
    RISK_SYSTEMATIC_VALUE_ABOVE: float = 5000
    RISK_REPEATED_PRODUCT_MIN_UNRESOLVED: int = 3
    RISK_THEFT_VARIANCE_BELOW: int = -50
    RISK_THEFT_VALUE_ABOVE: float = 20000

    NOTIFIER_BACKEND: str = "outbox"
    OPS_ENABLE_RECONCILIATION_SCAN: bool = True


settings = Settings()
