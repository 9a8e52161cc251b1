from typing import Any, Optional

from pydantic import PostgresDsn, ValidationInfo, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):

    ENVIRONMENT_NAME: str = "Development"

    @property
    def is_production(self):
        return self.ENVIRONMENT_NAME == "Production"

    PROJECT_NAME: str = "staking-indexer"

    # CHAIN
    CHAIN: str = "moonbeam"
    CHAIN_RPC_ENDPOINT: str = "wss://wss.api.moonbeam.network"
    # websocket endpoint used for state queries, may differ from the indexing rpc
    CHAIN_STATE_RPC_ENDPOINT: Optional[str] = None
    ARCHIVE_GATEWAY: Optional[str] = None
    SS58_PREFIX: int = 1284
    TOTAL_SUPPLY: int = 0
    TOKEN_SYMBOL: Optional[str] = None
    TOKEN_DECIMALS: int = 18

    START_BLOCK: int = 0
    END_BLOCK: Optional[int] = None

    # RESILIENCE
    ARCHIVE_FAILURE_THRESHOLD: int = 3
    ARCHIVE_RETRY_DELAY_SECONDS: float = 5
    ARCHIVE_RETRY_INTERVAL_SECONDS: float = 5 * 60
    # a batch spanning more blocks than this is considered historical
    HISTORICAL_BLOCK_THRESHOLD: int = 100
    RECONCILE_RETRY_INTERVAL_SECONDS: float = 5 * 60
    RECONCILE_ON_CATCH_UP: bool = True
    RPC_BATCH_SIZE: int = 250
    RPC_POLL_INTERVAL_SECONDS: float = 6
    RPC_REQUEST_TIMEOUT_SECONDS: float = 60

    RETRY_BASE_DELAY_SECONDS: float = 3
    RETRY_MAX_DELAY_SECONDS: float = 30
    OPTIONAL_FETCH_MAX_RETRIES: int = 3

    POSTGRES_SERVER: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = "postgres"
    POSTGRES_DB: str = "staking"
    SQLALCHEMY_DATABASE_URI: PostgresDsn | str | None = None

    # Seq log
    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = "logs"
    SEQ_SERVER_URL: Optional[str] = None
    SEQ_SERVER_API_KEY: Optional[str] = None

    @property
    def token_symbol(self) -> str:
        return self.TOKEN_SYMBOL or self.CHAIN.upper()

    @field_validator("SQLALCHEMY_DATABASE_URI", mode="before")
    def assemble_db_connection(cls, v: str | None, info: ValidationInfo) -> Any:
        if isinstance(v, str):
            return v
        return PostgresDsn.build(
            scheme="postgresql+psycopg",
            username=info.data.get("POSTGRES_USER"),
            password=info.data.get("POSTGRES_PASSWORD"),
            host=info.data.get("POSTGRES_SERVER"),
            port=info.data.get("POSTGRES_PORT"),
            path=f"{info.data.get('POSTGRES_DB') or ''}",
        )

    class Config:

        case_sensitive = True
        env_file = "../.env"
        extra = "allow"


settings = Settings()
