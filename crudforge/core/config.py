from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List

class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="CRUDFORGE_",
        case_sensitive=True,
        extra="ignore",
    )

    APP_NAME: str = "crudforge"
    APP_DEBUG: bool = False

    DATABASE_URL: str = "sqlite+pysqlite:///./crudforge.db"

    DEFAULT_API_PREFIX: str = "api"
    DEFAULT_PER_PAGE: int = 15
    MAX_PER_PAGE: int = 100

    AUTO_DISCOVER_ROUTES: bool = True
    # Comma separated import paths scanned for @api_resource models
    MODEL_MODULES: str = ""
    SCHEMA_ENDPOINT_ENABLED: bool = True

    @property
    def model_modules_list(self) -> List[str]:
        return [m.strip() for m in self.MODEL_MODULES.split(",") if m.strip()]

settings = Settings()
