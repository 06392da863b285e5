
import os
from functools import lru_cache
from typing import Optional
from pydantic import BaseModel


class Settings(BaseModel):
    crm_base_url: Optional[str] = None
    crm_api_token: Optional[str] = None
    crm_timeout_seconds: float = 15.0
    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4o"
    docai_timeout_seconds: float = 8.0
    app_base_url: str = "http://localhost:3000"
    signature_token_days: int = 7
    signature_inline_limit: int = 65000
    validation_text_limit: int = 8000
    reference_documents_dir: Optional[str] = None
    default_country: str = "Germany"
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            crm_base_url=os.getenv("ERP_BASE_URL") or os.getenv("NEXT_PUBLIC_ERP_BASE_URL"),
            crm_api_token=os.getenv("ERP_API_TOKEN"),
            crm_timeout_seconds=float(os.getenv("ERP_TIMEOUT_SECONDS", "15")),
            openai_api_key=os.getenv("OPENAI_API_KEY"),
            openai_model=os.getenv("OPENAI_MODEL", "gpt-4o"),
            docai_timeout_seconds=float(os.getenv("OPENAI_TIMEOUT_SECONDS", "8")),
            app_base_url=os.getenv("APP_BASE_URL", "http://localhost:3000"),
            reference_documents_dir=os.getenv("REFERENCE_DOCUMENTS_DIR"),
            default_country=os.getenv("DEFAULT_COUNTRY", "Germany"),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )

    @property
    def signing_base_url(self) -> str:
        return self.app_base_url.rstrip("/")


@lru_cache
def get_settings() -> Settings:
    return Settings.from_env()
