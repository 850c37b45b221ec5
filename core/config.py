from decouple import config, Csv

class Settings:
    # Database Configuration
    DATABASE_URL: str = config("DATABASE_URL", default="sqlite+aiosqlite:///./carryconnect.db")
    DATABASE_ECHO: bool = config("DATABASE_ECHO", default=False, cast=bool)

    # Security Configuration
    SECRET_KEY: str = config("SECRET_KEY", default="your-secret-key-here-change-in-production")
    ACCESS_TOKEN_EXPIRE_MINUTES: int = config("ACCESS_TOKEN_EXPIRE_MINUTES", default=60 * 24 * 7, cast=int)
    BCRYPT_ROUNDS: int = config("BCRYPT_ROUNDS", default=12, cast=int)

    # CORS / Rate limiting
    CORS_ORIGINS: list = config(
        "CORS_ORIGINS",
        default="http://localhost:3000,http://localhost:5000,http://localhost:5173",
        cast=Csv()
    )
    RATE_LIMIT_CALLS: int = config("RATE_LIMIT_CALLS", default=100, cast=int)
    RATE_LIMIT_PERIOD: int = config("RATE_LIMIT_PERIOD", default=60, cast=int)

    # Storage Configuration
    UPLOAD_DIR: str = config("UPLOAD_DIR", default="uploads")
    MAX_ATTACHMENT_SIZE: int = config("MAX_ATTACHMENT_SIZE", default=10 * 1024 * 1024, cast=int)

    # Delivery / chat behaviour
    CHAT_PAGE_SIZE: int = config("CHAT_PAGE_SIZE", default=20, cast=int)
    OTP_MAX_ATTEMPTS: int = config("OTP_MAX_ATTEMPTS", default=10, cast=int)

    # Push notifications (Firebase service account JSON; empty disables push)
    FIREBASE_CREDENTIALS_PATH: str = config("FIREBASE_CREDENTIALS_PATH", default="")

    # Environment
    ENVIRONMENT: str = config("ENVIRONMENT", default="development")
    DEBUG: bool = config("DEBUG", default=True, cast=bool)

    # Logging
    LOG_LEVEL: str = config("LOG_LEVEL", default="INFO")

settings = Settings()
