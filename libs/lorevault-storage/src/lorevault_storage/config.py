"""Database configuration via environment variables."""

from pydantic import Field
from pydantic_settings import BaseSettings

from lorevault_core.models.enums import IndexProfile


class DatabaseConfig(BaseSettings):
    """PostgreSQL connection and vector index settings, loaded from LOREVAULT_DB_* env vars."""

    model_config = {"env_prefix": "LOREVAULT_DB_"}

    host: str = "localhost"
    port: int = 5432
    user: str = "lorevault"
    password: str = "lorevault_dev"  # noqa: S105
    name: str = "lorevault"

    min_pool_size: int = 2
    max_pool_size: int = 10
    pool_timeout: float = 30.0
    statement_timeout_ms: int = Field(default=30000, ge=0)

    embedding_dimensions: int = Field(default=768, gt=0, le=16000)
    expected_collection_size: int = Field(default=1000, ge=0)
    index_profile: IndexProfile | None = None
    maintenance_bloat_ratio: float = Field(default=0.2, gt=0.0)

    @property
    def dsn(self) -> str:
        """PostgreSQL connection string."""
        return f"postgresql://{self.user}:{self.password}@{self.host}:{self.port}/{self.name}"

    @property
    def sqlalchemy_url(self) -> str:
        """SQLAlchemy URL using the psycopg 3 driver, for alembic."""
        return (
            f"postgresql+psycopg://{self.user}:{self.password}"
            f"@{self.host}:{self.port}/{self.name}"
        )
