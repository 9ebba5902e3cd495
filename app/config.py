import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool = False) -> bool:
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    return raw_value.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_list(name: str, default: str = "") -> tuple[str, ...]:
    raw_value = os.getenv(name, default)
    return tuple(item.strip() for item in raw_value.split(",") if item.strip())


@dataclass(frozen=True)
class Settings:
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./otp_service.db")
    otp_ttl_seconds: int = int(os.getenv("OTP_TTL_SECONDS", "300"))
    otp_store_backend: str = os.getenv("OTP_STORE_BACKEND", "memory").strip().lower()
    # Returning the code in the issuance response defeats out-of-band delivery.
    otp_expose_code: bool = _env_bool("OTP_EXPOSE_CODE", False)
    otp_lock_stripes: int = int(os.getenv("OTP_LOCK_STRIPES", "64"))
    jwt_secret: str = os.getenv("JWT_SECRET", "")
    jwt_algorithm: str = os.getenv("ALGORITHM", "HS256")
    credential_expire_minutes: int = int(os.getenv("CREDENTIAL_EXPIRE_MINUTES", "60"))
    credential_issuer: str = os.getenv("CREDENTIAL_ISSUER", "otp-service")
    otp_email_sender: str = (
        os.getenv("OTP_EMAIL_SENDER")
        or os.getenv("GMAIL_SENDER")
        or os.getenv("FROM_EMAIL", "")
    )
    otp_email_subject: str = os.getenv("OTP_EMAIL_SUBJECT", "Your verification code")
    gmail_token_file: str = os.getenv("GMAIL_TOKEN_FILE", "")
    gmail_credentials_file: str = os.getenv(
        "GMAIL_CREDENTIALS_FILE", os.getenv("GOOGLE_SERVICE_ACCOUNT_FILE", "")
    )
    email_timeout_seconds: int = int(os.getenv("EMAIL_TIMEOUT_SECONDS", "10"))
    seed_email: str = os.getenv("SEED_EMAIL", "").strip().lower()
    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()
    cors_origins: tuple[str, ...] = _env_list(
        "CORS_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173"
    )


settings = Settings()
