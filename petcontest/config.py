import os
from pydantic import BaseModel
from dotenv import load_dotenv

# Load environment variables
load_dotenv()


class Settings(BaseModel):
    """Application settings, read from the environment once at import."""
    app_name: str = os.getenv("APP_NAME", "PetContest")
    app_version: str = os.getenv("APP_VERSION", "1.0.0")
    debug: bool = os.getenv("DEBUG", "True").lower() == "true"
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    mongodb_url: str = os.getenv("MONGODB_URL", "mongodb://localhost:27017")
    database_name: str = os.getenv("DATABASE_NAME", "petcontest")

    # Competition economy
    entry_fee: int = int(os.getenv("COMPETITION_ENTRY_FEE", "10"))
    vote_fraud_threshold: int = int(os.getenv("VOTE_FRAUD_THRESHOLD", "3"))
    # A distribution claim older than this is considered stalled and may be resumed
    distribution_lease_seconds: int = int(os.getenv("DISTRIBUTION_LEASE_SECONDS", "600"))

    # Scheduler
    scheduler_enabled: bool = os.getenv("SCHEDULER_ENABLED", "True").lower() == "true"
    timezone: str = os.getenv("COMPETITION_TIMEZONE", "Asia/Karachi")
    nightly_job_hour: int = int(os.getenv("NIGHTLY_JOB_HOUR", "23"))
    nightly_job_minute: int = int(os.getenv("NIGHTLY_JOB_MINUTE", "59"))


settings = Settings()
