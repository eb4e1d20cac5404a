from pydantic_settings import BaseSettings
from pydantic import PrivateAttr, field_validator
from typing import Optional, List, Union, FrozenSet


class Settings(BaseSettings):
    # Database
    database_url: str
    
    # Redis
    redis_url: str = "redis://localhost:6379"
    redis_password: Optional[str] = None
    redis_db: int = 0
    
    # Firebase
    firebase_project_id: str
    firebase_credentials_path: str
    
    # API
    api_v1_str: str = "/api/v1"
    
    # Environment
    environment: str = "development"
    debug: bool = True
    
    # CORS
    cors_origins: Union[str, List[str]] = ["http://localhost:3000"]
    
    # Access control: comma-separated operator addresses provisioned as admins
    bootstrap_admin_emails: str = ""
    
    # Quotas
    default_daily_generation_limit: int = 10
    anonymous_daily_generation_limit: int = 1
    admin_generation_limit: int = 999999
    max_daily_generation_limit: int = 1000
    max_image_payload_bytes: int = 2 * 1024 * 1024
    
    # Image generation (Gemini)
    gemini_api_key: str = ""
    gemini_model: str = "gemini-2.0-flash-exp"
    gemini_api_base: str = "https://generativelanguage.googleapis.com/v1beta"
    generation_timeout_seconds: float = 60.0
    
    # Burst rate limiting
    rate_limit_enabled: bool = True
    rate_limit_per_minute: int = 60
    anonymous_rate_limit_per_minute: int = 20
    
    _bootstrap_admins: FrozenSet[str] = PrivateAttr(default_factory=frozenset)
    
    @field_validator('cors_origins', mode='before')
    @classmethod
    def parse_cors_origins(cls, v: Union[str, List[str]]) -> List[str]:
        """Parse CORS origins from environment variable (comma-separated) or use default list."""
        if isinstance(v, str):
            # Split by comma and strip whitespace
            return [origin.strip() for origin in v.split(',') if origin.strip()]
        return v
    
    def model_post_init(self, __context) -> None:
        self._bootstrap_admins = frozenset(
            email.strip() for email in self.bootstrap_admin_emails.split(',') if email.strip()
        )
    
    @property
    def bootstrap_admins(self) -> FrozenSet[str]:
        """Operator addresses, resolved once at startup."""
        return self._bootstrap_admins
    
    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"  # Allow extra fields from environment


settings = Settings()
