"""Configuration management using Pydantic settings."""

from typing import Optional
from pydantic import Field
from pydantic_settings import BaseSettings


class IndexerConfig(BaseSettings):
    """Configuration for the public key exposure indexer."""

    # Bitcoin node settings
    bitcoin_transport: str = Field(default="rpc", description="Node interface (rpc|rest)")
    bitcoin_rpc_host: str = Field(default="localhost", description="Bitcoin Core RPC host")
    bitcoin_rpc_port: int = Field(default=8332, description="Bitcoin Core RPC port")
    bitcoin_rpc_user: str = Field(default="", description="Bitcoin Core RPC username")
    bitcoin_rpc_password: str = Field(default="", description="Bitcoin Core RPC password")
    bitcoin_rest_url: str = Field(default="http://127.0.0.1:8332", description="Bitcoin Core REST base URL")
    bitcoin_rpc_timeout: int = Field(default=30, description="Node request timeout in seconds")
    block_verbosity: int = Field(default=3, description="getblock verbosity (3 includes prevouts)")

    # Database settings
    database_url_override: Optional[str] = Field(
        default=None, alias="database_url", description="Full SQLAlchemy URL, overrides db_* parts"
    )
    db_host: str = Field(default="localhost", description="PostgreSQL host")
    db_port: int = Field(default=5432, description="PostgreSQL port")
    db_name: str = Field(default="bitcoin_exposure", description="Database name")
    db_user: str = Field(default="postgres", description="Database username")
    db_password: str = Field(default="", description="Database password")
    db_pool_size: int = Field(default=10, description="Connection pool size")
    db_max_overflow: int = Field(default=20, description="Max pool overflow")

    # Sync settings
    sync_start_height: int = Field(default=0, description="First height ingested into an empty index")
    sync_poll_interval: int = Field(default=10, description="Seconds between tip polls")
    fetch_retry_delay: float = Field(default=2.0, description="Initial block fetch backoff in seconds")
    fetch_retry_max_delay: float = Field(default=300.0, description="Block fetch backoff ceiling in seconds")
    commit_retry_attempts: int = Field(default=3, description="Commit attempts per block")
    commit_retry_delay: float = Field(default=2.0, description="Initial commit backoff in seconds")
    retry_pause_seconds: float = Field(default=60.0, description="Pause after retries are exhausted")

    # Network
    address_hrp: str = Field(default="bc", description="Bech32 human readable part")

    # Logging settings
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(default="json", description="Log format (json|text)")
    log_file: Optional[str] = Field(default=None, description="Log file path")
    log_max_size_mb: int = Field(default=100, description="Max log file size in MB")
    log_backup_count: int = Field(default=5, description="Number of log backups")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        populate_by_name = True

    @property
    def bitcoin_rpc_url(self) -> str:
        """Generate Bitcoin Core RPC URL."""
        return f"http://{self.bitcoin_rpc_host}:{self.bitcoin_rpc_port}"

    @property
    def database_url(self) -> str:
        """Generate the database URL."""
        if self.database_url_override:
            return self.database_url_override
        return f"postgresql://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"
