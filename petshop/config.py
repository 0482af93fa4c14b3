import os
from decimal import Decimal
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel

# Load environment variables from .env file
load_dotenv()


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Settings(BaseModel):
    """
    Runtime configuration.
    Built once at startup and handed to create_app(); request handlers
    reach it through the get_settings dependency.
    """

    database_url: str
    secret_key: str = "change-me"
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 1440
    bcrypt_rounds: int = 12

    cors_origins: List[str] = ["*"]
    environment: str = "development"
    debug: bool = False
    log_level: str = "INFO"
    port: int = 5000

    # Checkout pricing
    tax_rate: Decimal = Decimal("0.11")
    shipping_fee: Decimal = Decimal("25000")

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def show_stack_traces(self) -> bool:
        return self.debug and not self.is_production

    @classmethod
    def from_env(cls, database_url: Optional[str] = None) -> "Settings":
        if database_url is None:
            database_url = os.getenv("DATABASE_URL") or _mysql_url_from_env()

        return cls(
            database_url=database_url,
            secret_key=os.getenv("SECRET_KEY", "change-me"),
            algorithm=os.getenv("ALGORITHM", "HS256"),
            access_token_expire_minutes=int(
                os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "1440")
            ),
            bcrypt_rounds=int(os.getenv("BCRYPT_ROUNDS", "12")),
            cors_origins=[
                origin.strip()
                for origin in os.getenv("CORS_ORIGIN", "*").split(",")
                if origin.strip()
            ],
            environment=os.getenv("ENVIRONMENT", "development"),
            debug=_env_bool("DEBUG"),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            port=int(os.getenv("PORT", "5000")),
            tax_rate=Decimal(os.getenv("TAX_RATE", "0.11")),
            shipping_fee=Decimal(os.getenv("SHIPPING_FEE", "25000")),
        )


def _mysql_url_from_env() -> str:
    host = os.getenv("DB_HOST", "localhost")
    port = os.getenv("DB_PORT", "3306")
    user = os.getenv("DB_USER", "root")
    password = os.getenv("DB_PASSWORD", "")
    name = os.getenv("DB_NAME", "petshop")
    return f"mysql+pymysql://{user}:{password}@{host}:{port}/{name}?charset=utf8mb4"
