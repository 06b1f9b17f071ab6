import os

from dotenv import load_dotenv

load_dotenv()


class Settings:
    # --- Database ---
    DATABASE_URL = os.environ.get("DATABASE_URL")
    DATABASE_PUBLIC_URL = os.environ.get("DATABASE_PUBLIC_URL")
    DATABASE_PATH = os.environ.get("DATABASE_PATH", os.path.join("data", "quiz.db"))

    # --- Redis (Celery broker + sweep lock) ---
    REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379/0")

    # --- SMTP ---
    SMTP_HOST = os.environ.get("SMTP_HOST")
    SMTP_PORT = int(os.environ.get("SMTP_PORT", "587"))
    SMTP_USER = os.environ.get("SMTP_USER")
    SMTP_PASS = os.environ.get("SMTP_PASS")
    SMTP_FROM = os.environ.get("SMTP_FROM", "quiz@xjtlu.local")
    SMTP_TIMEOUT = float(os.environ.get("SMTP_TIMEOUT", "15"))

    # --- Reminder sweep ---
    REMINDER_LEAD_MINUTES = int(os.environ.get("REMINDER_LEAD_MINUTES", "5"))
    REMINDER_CATCHUP_WINDOW_MINUTES = int(os.environ.get("REMINDER_CATCHUP_WINDOW_MINUTES", "10"))
    # Never shorter than the catch-up window, otherwise a late sweep re-sends.
    REMINDER_LOOKBACK_MINUTES = max(
        int(os.environ.get("REMINDER_LOOKBACK_MINUTES", "15")),
        REMINDER_CATCHUP_WINDOW_MINUTES,
    )
    REMINDER_SWEEP_INTERVAL_SECONDS = float(os.environ.get("REMINDER_SWEEP_INTERVAL_SECONDS", "60"))

    # --- Ad-hoc test email ---
    TEST_EMAIL_COOLDOWN_SECONDS = int(os.environ.get("TEST_EMAIL_COOLDOWN_SECONDS", "1800"))
    TEST_EMAIL_FAILURE_COOLDOWN_SECONDS = int(os.environ.get("TEST_EMAIL_FAILURE_COOLDOWN_SECONDS", "10"))

    # --- HTTP API ---
    HOST = os.environ.get("HOST", "0.0.0.0")
    PORT = int(os.environ.get("PORT", "5000"))

    # --- Logging ---
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # --- Add more as needed ---

settings = Settings()
