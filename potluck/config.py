from enum import Enum
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Env(Enum):
    local = "local"
    dev = "dev"
    prod = "prod"


class Config(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Required. A missing value fails at startup.
    supabase_url: str
    supabase_anon_key: str
    base_url: str

    env: Env = Env.local
    html_dir: Path = Path(__file__).resolve().parent / "templates"
    db_url: str = "sqlite+aiosqlite:///potluck.db"
    cookie_secure: bool = False
    auth_timeout: float = 10.0
    directory_url: str = "https://jsonplaceholder.typicode.com/users"
    log_level: str = "INFO"

    @property
    def project_ref(self) -> str:
        host = self.supabase_url.split("://", 1)[-1]
        return host.split("/", 1)[0].split(":", 1)[0].split(".", 1)[0]

    @property
    def auth_url(self) -> str:
        return f"{self.supabase_url.rstrip('/')}/auth/v1/"
