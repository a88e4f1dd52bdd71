import os
from typing import Literal
from dotenv import load_dotenv
import logging


logger = logging.getLogger(__name__)

# Load environment variables from .env file located in the backend directory.
# Environment variables explicitly set (e.g., by Docker Compose) take precedence.
BASE_DIR = os.path.dirname(os.path.dirname(__file__))
ENV_PATH = os.path.join(BASE_DIR, '.env')
load_dotenv(ENV_PATH)


def parse_bool(value: str, default: bool = False) -> bool:
    """
    Parses a boolean flag from an environment string.
    Accepts 1/0, true/false, yes/no, on/off (case-insensitive).
    """
    if value is None or value == "":
        return default
    value = value.strip().lower()
    if value in ("1", "true", "yes", "on"):
        return True
    if value in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"Invalid boolean value: {value}")


class Settings:
    # --- General Environment Settings ---
    # ENVIRONMENT determines application behavior (e.g., logging level, SQL echo).
    ENVIRONMENT: Literal["local", "staging",
                         "production"] = os.getenv('ENVIRONMENT', 'local')

    # --- PostgreSQL Database Configuration ---
    # Defaults are set for local Docker Compose setup.
    POSTGRES_USER: str = os.getenv('POSTGRES_USER', 'campaigns')
    POSTGRES_PASSWORD: str = os.getenv('POSTGRES_PASSWORD', 'campaigns_password')
    POSTGRES_SERVER: str = os.getenv('POSTGRES_SERVER', 'postgres')
    POSTGRES_PORT: int = int(os.getenv('POSTGRES_PORT', 5432))
    POSTGRES_DB: str = os.getenv('POSTGRES_DB', 'campaigns_db')

    # Full PostgreSQL Database URL. Takes precedence over the individual components.
    POSTGRES_DB_URL: str = os.getenv('POSTGRES_DB_URL', "")

    # --- Campaign Engine Settings ---
    # Currency assigned to campaigns created without an explicit currency.
    DEFAULT_CURRENCY: str = os.getenv('DEFAULT_CURRENCY', 'TRY').upper()
    # Decimal places quoted discount amounts are rounded to before they reach the caller.
    MONEY_DECIMAL_PLACES: int = int(os.getenv('MONEY_DECIMAL_PLACES', 2))
    # When enabled, commit re-validates global and per-customer budgets while
    # holding a row lock on the campaign.
    STRICT_BUDGET_ENFORCEMENT: bool = parse_bool(
        os.getenv('STRICT_BUDGET_ENFORCEMENT'), default=True)
    # Page size bounds for campaign listings.
    MAX_PAGE_SIZE: int = int(os.getenv('MAX_PAGE_SIZE', 100))

    # --- Logging ---
    LOG_LEVEL: str = os.getenv('LOG_LEVEL', 'INFO')
    # LOG_FORMAT is one of simple, detailed, json.
    LOG_FORMAT: str = os.getenv('LOG_FORMAT', 'json')
    LOG_TO_FILE: bool = parse_bool(os.getenv('LOG_TO_FILE'), default=False)
    LOG_DIR: str = os.getenv('LOG_DIR', 'logs')

    @property
    def is_local(self) -> bool:
        return self.ENVIRONMENT == "local"

    @property
    def SQLALCHEMY_DATABASE_URI(self) -> str:
        """
        Constructs the SQLAlchemy database URI.
        Prioritizes a full URL (POSTGRES_DB_URL) over individual components.
        Ensures async PostgreSQL driver is specified.
        """
        if self.POSTGRES_DB_URL:
            return self.POSTGRES_DB_URL

        return (
            f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_SERVER}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )


settings = Settings()
