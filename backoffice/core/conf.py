from functools import lru_cache
from typing import Any, Literal

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from backoffice.core.path_conf import BASE_PATH


class Settings(BaseSettings):
    """Global settings"""

    model_config = SettingsConfigDict(
        env_file=f'{BASE_PATH}/.env',
        env_file_encoding='utf-8',
        extra='ignore',
        case_sensitive=True,
    )

    # .env environment
    ENVIRONMENT: Literal['dev', 'prod'] = 'dev'

    # FastAPI
    FASTAPI_API_V1_PATH: str = '/api/v1'
    FASTAPI_TITLE: str = 'AiYou Backoffice'
    FASTAPI_DESCRIPTION: str = 'Billing, credits and LLM provider management for AiYou tenants'
    FASTAPI_DOCS_URL: str = '/docs'
    FASTAPI_REDOC_URL: str = '/redoc'
    FASTAPI_OPENAPI_URL: str | None = '/openapi'

    # .env database
    DATABASE_HOST: str = '127.0.0.1'
    DATABASE_PORT: int = 5432
    DATABASE_USER: str = 'postgres'
    DATABASE_PASSWORD: str = 'postgres'

    # Database
    DATABASE_ECHO: bool | Literal['debug'] = False
    DATABASE_POOL_ECHO: bool | Literal['debug'] = False
    DATABASE_SCHEMA: str = 'aiyou_backoffice'

    # .env Redis
    REDIS_HOST: str = '127.0.0.1'
    REDIS_PORT: int = 6379
    REDIS_PASSWORD: str = ''
    REDIS_DATABASE: int = 0

    # Redis
    REDIS_TIMEOUT: int = 5

    # .env Token
    TOKEN_SECRET_KEY: str = 'change-me-in-production'  # secrets.token_urlsafe(32)

    # Token
    TOKEN_ALGORITHM: str = 'HS256'
    TOKEN_EXPIRE_SECONDS: int = 60 * 60 * 24  # 1 day

    # .env Internal service authentication (X-Internal-Key)
    INTERNAL_API_KEY: str = ''

    # .env Fernet key for stored secrets, derived from TOKEN_SECRET_KEY when empty
    ENCRYPTION_KEY: str = ''
    ENCRYPTION_SALT: str = 'aiyou-backoffice'

    # CORS
    CORS_ALLOWED_ORIGINS: list[str] = [  # no trailing slash
        'http://127.0.0.1:8000',
        'http://localhost:5173',
    ]
    CORS_EXPOSE_HEADERS: list[str] = [
        'X-Request-ID',
    ]

    # Middleware
    MIDDLEWARE_CORS: bool = True

    # Time
    DATETIME_TIMEZONE: str = 'America/Sao_Paulo'
    DATETIME_FORMAT: str = '%Y-%m-%d %H:%M:%S'

    # Log
    LOG_FORMAT: str = '%(asctime)s | %(levelname)-8s | %(name)s | %(message)s'

    # Log (console)
    LOG_STD_LEVEL: str = 'INFO'

    # Log (file)
    LOG_FILE_ACCESS_LEVEL: str = 'INFO'
    LOG_FILE_ERROR_LEVEL: str = 'ERROR'
    LOG_ACCESS_FILENAME: str = 'aiyou_backoffice_access.log'
    LOG_ERROR_FILENAME: str = 'aiyou_backoffice_error.log'

    # .env Asaas
    ASAAS_API_KEY: str = ''
    ASAAS_SANDBOX: bool = True
    ASAAS_WEBHOOK_TOKEN: str = ''

    # Asaas
    ASAAS_SANDBOX_URL: str = 'https://sandbox.asaas.com/api/v3'
    ASAAS_PRODUCTION_URL: str = 'https://api.asaas.com/v3'
    ASAAS_TIMEOUT_SECONDS: int = 30
    ASAAS_OVERDUE_BLOCK_DAYS: int = 7  # Days overdue before the tenant is blocked

    # .env Stripe
    STRIPE_SECRET_KEY: str = ''  # Stripe secret key (sk_...)
    STRIPE_WEBHOOK_SECRET: str = ''  # Webhook signing secret (whsec_...)

    # Stripe
    STRIPE_WEBHOOK_TOLERANCE_SECONDS: int = 300
    GATEWAY_CIRCUIT_FAILURE_THRESHOLD: int = 5
    GATEWAY_CIRCUIT_RECOVERY_SECONDS: int = 60

    # Billing
    BILLING_SCHEDULER_ENABLED: bool = False
    BILLING_REPLENISH_MIN_DAYS: int = 25  # Minimum days between plan credit grants
    BILLING_REPLENISH_HOUR: int = 3
    BILLING_REMINDER_HOUR: int = 9
    BILLING_WEBHOOK_REPLAY_MINUTES: int = 5

    # Credits
    CREDIT_SETTINGS_CACHE_SECONDS: int = 600
    CREDIT_BALANCE_CACHE_SECONDS: int = 60
    CREDIT_PURCHASE_DUE_DAYS: int = 3
    CREDIT_REDIS_PREFIX: str = 'aiyou_backoffice:credit'

    # Webhooks
    WEBHOOK_MAX_ATTEMPTS: int = 3
    WEBHOOK_RETRY_BACKOFF_SECONDS: int = 60

    # LLM providers
    LLM_TEST_TIMEOUT_SECONDS: int = 15
    LLM_DEFAULT_ALERT_THRESHOLD_PCT: int = 80
    OPENROUTER_REFERER: str = 'https://meuaiyou.cloud'
    OPENROUTER_TITLE: str = 'AiYou Assist'

    @model_validator(mode='before')
    @classmethod
    def check_env(cls, values: Any) -> Any:
        """Hide the OpenAPI docs in production."""
        if values.get('ENVIRONMENT') == 'prod':
            # FastAPI
            values['FASTAPI_OPENAPI_URL'] = None

        return values


@lru_cache
def get_settings() -> Settings:
    """Cached settings instance"""
    return Settings()


# Global settings
settings = get_settings()
