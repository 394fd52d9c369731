"""
Authentication Configuration

Supabase JWT verification, the cron secret and the admin allow-list,
read from the environment (SUPABASE_URL, SUPABASE_JWT_SECRET, JWT_ALGORITHM,
AUTH_ENABLED, CRON_SECRET, ADMIN_EMAILS).
"""

from typing import List, Optional
from functools import lru_cache
from pydantic import Field
from pydantic_settings import BaseSettings


class AuthConfig(BaseSettings):
    supabase_url: str = ""
    supabase_jwt_secret: str = ""
    jwt_algorithm: str = "HS256"
    jwt_audience: str = "authenticated"
    auth_enabled: bool = True  # false only for local development
    cron_secret: str = ""

    # Comma-separated; a list field would be JSON-decoded from the env
    admin_emails_csv: str = Field("", validation_alias="ADMIN_EMAILS")

    class Config:
        extra = "ignore"

    @property
    def admin_emails(self) -> List[str]:
        return [email.strip() for email in self.admin_emails_csv.split(",") if email.strip()]

    @property
    def supabase_project_ref(self) -> Optional[str]:
        """https://abcdefg.supabase.co -> abcdefg"""
        if not self.supabase_url:
            return None
        return self.supabase_url.replace("https://", "").split(".")[0] or None


@lru_cache()
def get_auth_config() -> AuthConfig:
    return AuthConfig()
