import os
from dataclasses import dataclass
from dotenv import load_dotenv

load_dotenv()

@dataclass
class Settings:
    # API settings
    api_host: str = os.getenv("API_HOST", "127.0.0.1")
    api_port: int = int(os.getenv("API_PORT", "8000"))

    # Database settings
    data_file: str = os.getenv("LIBRARY_DATA_FILE", "library.db")

    # Security / session settings
    secret_key: str = os.getenv("SECRET_KEY", "your-secret-key-change-this-in-production")
    session_cookie_name: str = os.getenv("SESSION_COOKIE_NAME", "library_session")
    session_ttl_minutes: int = int(os.getenv("SESSION_TTL_MINUTES", "10080"))  # 7 days
    password_iterations: int = int(os.getenv("PASSWORD_ITERATIONS", "260000"))

    # Application settings
    app_name: str = os.getenv("APP_NAME", "Shared Lending Library")
    app_version: str = os.getenv("APP_VERSION", "1.0.0")
    debug: bool = os.getenv("DEBUG", "False").lower() in ("true", "1", "yes")
    environment: str = os.getenv("ENVIRONMENT", "development")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")


settings = Settings()
