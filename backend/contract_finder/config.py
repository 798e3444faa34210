from pathlib import Path
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    data_path: Path = Path.home() / "ContractFinder"
    api_prefix: str = "/api/v1"
    host: str = "127.0.0.1"
    port: int = 8000

    # LLM used by the field inferrer. Without a key the inferrer is disabled
    # and every document yields empty fields.
    openai_api_key: str | None = None
    openai_base_url: str | None = None
    openai_model: str = "gpt-3.5-turbo"
    openai_max_retries: int = 2

    # OAuth app used to refresh stored user tokens.
    google_client_id: str | None = None
    google_client_secret: str | None = None
    google_token_uri: str = "https://oauth2.googleapis.com/token"

    # Mail search batching: detail fetches run concurrently inside a batch,
    # batches run one after another with a pause in between.
    mail_batch_size: int = 10
    mail_batch_pause_seconds: float = 1.0
    default_max_results: int = 100

    # Network timeouts (seconds). Short for status polls, long for search
    # initiation and result materialization.
    poll_timeout_seconds: float = 10.0
    search_timeout_seconds: float = 30.0
    poll_max_failures: int = 5

    # Extraction bounds.
    extract_max_chars: int = 8000
    max_document_bytes: int = 25 * 1024 * 1024  # 25 MiB
    max_upload_bytes: int = 10 * 1024 * 1024  # 10 MiB

    @property
    def db_path(self) -> Path:
        return self.data_path / "db.sqlite"

    model_config = {"env_prefix": "CONTRACTS_"}


settings = Settings()
