from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_db: str = "analytics"
    postgres_user: str = "postgres"
    postgres_password: str = "postgres"

    clickhouse_host: str = "localhost"
    clickhouse_port: int = 8123
    clickhouse_db: str = "analytics"
    clickhouse_user: str = "default"
    clickhouse_password: str = "clickhouse"

    query_timeout_seconds: float = 30.0
    enrichment_concurrency: int = 4

    max_funnel_entries: int = 15000
    top_labels: int = 5

    product_api_url: str = "https://crm.actium.ro/api/identificare-produs"
    product_api_timeout_seconds: float = 5.0

    log_level: str = "INFO"

    @property
    def database_url(self) -> str:
        return (
            f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    class Config:
        env_file = ".env"


settings = Settings()
