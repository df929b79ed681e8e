"""
Configuration Module

Loads and validates environment variables
"""

import os
from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load environment variables
load_dotenv()


class Settings(BaseSettings):
    """Application settings"""

    model_config = SettingsConfigDict(env_file='.env', case_sensitive=True, extra='ignore')

    # Query service (agent gateway with mailbox tools)
    QUERY_SERVICE_URL: str = ''
    QUERY_SERVICE_API_KEY: str = ''

    # Models per stage
    FETCH_MODEL: str = 'gpt-5-mini'
    EXTRACT_MODEL: str = 'gpt-5-mini'
    MERGE_MODEL: str = 'gpt-5-mini'
    TOPIC_MODEL: str = 'gpt-4.1-mini'

    # Mailbox
    NEWS_FOLDER: str = 'Inbox/news'
    MAILBOX_TOOLS: str = 'ask_work_iq'

    # Timeouts (milliseconds)
    FETCH_TIMEOUT_MS: int = 90000
    EXTRACT_TIMEOUT_MS: int = 90000
    MERGE_TIMEOUT_MS: int = 45000
    TOPIC_TIMEOUT_MS: int = 180000

    # Pipeline
    EXTRACTION_BATCH_SIZE: int = 5
    DEFAULT_DAYS: int = 3
    DEFAULT_MAX_RESULTS: int = 50

    # Circuit breaker
    CIRCUIT_FAILURE_THRESHOLD: int = 5
    CIRCUIT_RESET_TIMEOUT_MS: int = 60000

    # Rate limits
    STREAM_RATE_LIMIT: str = '5/minute'
    API_RATE_LIMIT: str = '10/minute'
    TRUST_PROXY_HEADERS: bool = False

    # Server
    PORT: int = 3000
    NODE_ENV: str = 'development'
    APP_VERSION: str = '1.0.0'

    # Logging
    LOG_LEVEL: str = 'info'

    @property
    def mailbox_tools(self) -> list:
        """Tool names enabled for sessions that need mailbox access"""
        return [t.strip() for t in self.MAILBOX_TOOLS.split(',') if t.strip()]


# Validate required environment variables
def validate_env():
    """Validate required environment variables"""
    required_vars = [
        'QUERY_SERVICE_URL',
    ]

    missing = []
    for var in required_vars:
        if not os.getenv(var):
            missing.append(var)

    if missing:
        print('❌ Missing required environment variables:')
        for var in missing:
            print(f'   - {var}')
        print('\nPlease ensure your .env file contains all required variables.')
        return False

    return True


# Create settings instance
settings = Settings()
