from pydantic_settings import BaseSettings
from pydantic import Field
from decimal import Decimal
from typing import Optional

class Settings(BaseSettings):
    # Database
    database_url: Optional[str] = Field(default=None, alias='DATABASE_URL')
    db_user: str = Field(default='postgres', alias='DB_USER')
    db_host: str = Field(default='localhost', alias='DB_HOST')
    db_password: str = Field(default='', alias='DB_PASSWORD')
    db_port: int = Field(default=5432, alias='DB_PORT')
    db_name: str = Field(default='dwelltime', alias='DB_NAME')
    db_pool_min_size: int = Field(default=2, alias='DB_POOL_MIN_SIZE')
    db_pool_max_size: int = Field(default=20, alias='DB_POOL_MAX_SIZE')
    db_command_timeout: float = Field(default=60.0, alias='DB_COMMAND_TIMEOUT')
    db_apply_schema: bool = Field(default=False, alias='DB_APPLY_SCHEMA')

    # Persistence backend: "postgres" or "memory"
    persistence_backend: str = Field(default='postgres', alias='PERSISTENCE_BACKEND')

    # JWT Security
    jwt_secret: str = Field(default='dev-secret-change-me', alias='JWT_SECRET')

    # AWS SES (email delivery)
    aws_access_key_id: Optional[str] = Field(default=None, alias='AWS_ACCESS_KEY_ID')
    aws_secret_access_key: Optional[str] = Field(default=None, alias='AWS_SECRET_ACCESS_KEY')
    aws_region: Optional[str] = Field(default=None, alias='AWS_REGION')
    aws_ses_from_email: Optional[str] = Field(default=None, alias='AWS_SES_FROM_EMAIL')
    aws_ses_from_name: str = Field(default='DwellTime', alias='AWS_SES_FROM_NAME')
    email_signature: str = Field(default='DwellTime - Get paid for the time you wait', alias='EMAIL_SIGNATURE')

    # Ops alerts (Discord-compatible webhook)
    error_webhook_url: Optional[str] = Field(default=None, alias='ERROR_WEBHOOK_URL')

    # Detention billing
    default_grace_period_minutes: int = Field(default=120, alias='DEFAULT_GRACE_PERIOD_MINUTES')
    default_hourly_rate: Decimal = Field(default=Decimal('75.00'), alias='DEFAULT_HOURLY_RATE')

    # Invoices
    invoice_number_prefix: str = Field(default='DT', alias='INVOICE_NUMBER_PREFIX')
    invoice_number_max_attempts: int = Field(default=5, alias='INVOICE_NUMBER_MAX_ATTEMPTS')

    # Fleet invitations
    invitation_expiry_days: int = Field(default=7, alias='INVITATION_EXPIRY_DAYS')
    invitation_code_length: int = Field(default=8, alias='INVITATION_CODE_LENGTH')
    invitation_code_max_attempts: int = Field(default=10, alias='INVITATION_CODE_MAX_ATTEMPTS')

    # App settings
    app_env: str = Field(default="development", alias='APP_ENV')
    log_level: Optional[str] = Field(default=None, alias='LOG_LEVEL')
    frontend_url: str = Field(default="http://localhost:8081", alias='FRONTEND_URL')

    # FastAPI specific
    port: int = Field(default=8001, alias='FASTAPI_PORT')
    host: str = Field(default="0.0.0.0", alias='FASTAPI_HOST')
    debug: bool = Field(default=True, alias='DEBUG')

    # CORS configuration
    cors_origins: str = Field(default="*", alias='CORS_ORIGINS')

    class Config:
        env_file = ".env"
        extra = "ignore"

    @property
    def db_connection_params(self) -> dict:
        if self.database_url:
            return {"dsn": self.database_url}
        return {
            "host": self.db_host,
            "port": self.db_port,
            "user": self.db_user,
            "password": self.db_password,
            "database": self.db_name,
        }

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"

    @property
    def email_enabled(self) -> bool:
        return bool(self.aws_ses_from_email and self.aws_region)

settings = Settings()
