"""Configuration settings for the planstate backend.

Wraps environment variables and provides defaults.
"""

from typing import Optional

from pydantic import PostgresDsn, ValidationInfo, field_validator
from pydantic_settings import BaseSettings

from planstate.core.exceptions import ConfigurationError


class Settings(BaseSettings):
    """Pydantic settings class.

    Attributes:
    ----------
        PROJECT_NAME (str): The name of the project.
        LOCAL_DEVELOPMENT (bool): Whether the application is running locally.
        ENVIRONMENT (str): The deployment environment (local, dev, test, prod).
        DEBUG (bool): Whether debug mode is enabled.
        LOG_LEVEL (str): The logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        POSTGRES_HOST (str): The PostgreSQL server hostname.
        POSTGRES_DB (str): The PostgreSQL database name.
        POSTGRES_USER (str): The PostgreSQL username.
        POSTGRES_PASSWORD (str): The PostgreSQL password.
        SQLALCHEMY_ASYNC_DATABASE_URI (Optional[PostgresDsn]): The SQLAlchemy async database URI.
        STRIPE_ENABLED (bool): Whether billing against Stripe is enabled.
        STRIPE_SECRET_KEY (Optional[str]): The Stripe API secret key.
        STRIPE_WEBHOOK_SECRET (Optional[str]): The signing secret for Stripe webhooks.
        STRIPE_PRICE_* (str): Stripe price IDs per tier and billing interval.
        WORKOS_API_KEY (Optional[str]): API key for the WorkOS organization directory.
        WORKOS_API_URL (str): Base URL of the WorkOS API.
        TRIAL_PERIOD_DAYS (int): Length of the free trial.
        REFUND_GUARANTEE_DAYS (int): Window of the money-back guarantee.
        CHECKOUT_SESSION_TTL_HOURS (int): Lifetime of a created checkout session.
        RUN_ALEMBIC_MIGRATIONS (bool): Whether to upgrade the schema on startup.
    """

    PROJECT_NAME: str = "planstate"
    LOCAL_DEVELOPMENT: bool = False
    ENVIRONMENT: str = "local"

    DEBUG: bool = False
    RUN_ALEMBIC_MIGRATIONS: bool = False

    # Logging configuration
    LOG_LEVEL: str = "INFO"

    POSTGRES_HOST: str = "localhost"
    POSTGRES_DB: str = "planstate"
    POSTGRES_USER: str = "planstate"
    POSTGRES_PASSWORD: str = ""
    SQLALCHEMY_ASYNC_DATABASE_URI: Optional[PostgresDsn | str] = None

    # Stripe configuration
    STRIPE_ENABLED: bool = False
    STRIPE_SECRET_KEY: Optional[str] = None
    STRIPE_WEBHOOK_SECRET: Optional[str] = None

    STRIPE_PRICE_PERSONAL_MONTHLY: str = ""
    STRIPE_PRICE_PERSONAL_YEARLY: str = ""
    STRIPE_PRICE_PRO_MONTHLY: str = ""
    STRIPE_PRICE_PRO_YEARLY: str = ""
    STRIPE_PRICE_ENTERPRISE_MONTHLY: str = ""
    STRIPE_PRICE_ENTERPRISE_YEARLY: str = ""

    # WorkOS organization directory
    WORKOS_API_KEY: Optional[str] = None
    WORKOS_API_URL: str = "https://api.workos.com"

    # Billing policy
    TRIAL_PERIOD_DAYS: int = 14
    REFUND_GUARANTEE_DAYS: int = 30
    CHECKOUT_SESSION_TTL_HOURS: int = 24

    @field_validator("STRIPE_SECRET_KEY", mode="before")
    def validate_stripe_secret_key(cls, v: Optional[str], info: ValidationInfo) -> Optional[str]:
        """Require the Stripe secret key when Stripe is enabled.

        Args:
        ----
            v (Optional[str]): The Stripe secret key.
            info (ValidationInfo): The validation context containing all field values.

        Raises:
        ------
            ValueError: If STRIPE_ENABLED is True and no secret key is set.
        """
        if info.data.get("STRIPE_ENABLED", False) and not v:
            raise ValueError("STRIPE_SECRET_KEY must be set when STRIPE_ENABLED is True")
        return v

    @field_validator("SQLALCHEMY_ASYNC_DATABASE_URI", mode="before")
    def assemble_db_connection(cls, v: Optional[str], info: ValidationInfo) -> PostgresDsn | str:
        """Build the SQLAlchemy database URI.

        Args:
        ----
            v (Optional[str]): The value of the SQLALCHEMY_ASYNC_DATABASE_URI setting.
            info (ValidationInfo): The validation context containing all field values.

        Returns:
        -------
            PostgresDsn: The assembled SQLAlchemy async database URI.

        """
        if isinstance(v, str):
            return v

        return PostgresDsn.build(
            scheme="postgresql+asyncpg",
            username=info.data.get("POSTGRES_USER"),
            password=info.data.get("POSTGRES_PASSWORD"),
            host=info.data.get("POSTGRES_HOST", "localhost"),
            path=f"{info.data.get('POSTGRES_DB') or ''}",
        )

    @property
    def price_ids(self) -> dict[str, str]:
        """Configured Stripe price IDs keyed by ``<tier>_<interval>``.

        Raises:
            ConfigurationError: If any price ID is missing. Prices decide what a
                customer is charged, so a gap is never papered over.
        """
        prices = {
            "personal_month": self.STRIPE_PRICE_PERSONAL_MONTHLY,
            "personal_year": self.STRIPE_PRICE_PERSONAL_YEARLY,
            "pro_month": self.STRIPE_PRICE_PRO_MONTHLY,
            "pro_year": self.STRIPE_PRICE_PRO_YEARLY,
            "enterprise_month": self.STRIPE_PRICE_ENTERPRISE_MONTHLY,
            "enterprise_year": self.STRIPE_PRICE_ENTERPRISE_YEARLY,
        }
        missing = sorted(key for key, value in prices.items() if not value)
        if missing:
            raise ConfigurationError(f"Missing Stripe price IDs: {', '.join(missing)}")
        return prices

    def webhook_secret_for(self, source: str) -> str:
        """Return the signing secret for a webhook source.

        Raises:
            ConfigurationError: If the source is unknown or has no secret configured.
        """
        secrets = {"stripe": self.STRIPE_WEBHOOK_SECRET}
        secret = secrets.get(source)
        if not secret:
            raise ConfigurationError(f"No webhook signing secret configured for '{source}'")
        return secret


settings = Settings()
