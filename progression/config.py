from pydantic_settings import BaseSettings
from pydantic import Field


class Settings(BaseSettings):
    # ======================
    # Database
    # ======================
    DATABASE_URL: str

    # =========
    # App
    # =========
    APP_NAME: str = "Participant Progression Engine"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    FRONTEND_URL: str = "*"

    # =========
    # JWT
    # =========
    JWT_SECRET_KEY: str
    JWT_ALGORITHM: str = "HS256"
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = 1440

    # =========
    # Screening exam
    # =========
    EXAM_SUBMISSION_GRACE_SECONDS: int = Field(default=120, ge=0)
    EXAM_CLOCK_TOLERANCE_SECONDS: int = Field(default=3, ge=0)
    MAX_TAB_SWITCHES: int = Field(default=3, ge=1)
    ALLOW_SCREENING_RETAKES: bool = False
    DEFAULT_TIMER_MINUTES: int = 30
    DEFAULT_PASSING_SCORE: int = 70

    # =========
    # Registration queries
    # =========
    QUERY_DEFAULT_PAGE_SIZE: int = 20
    QUERY_MAX_PAGE_SIZE: int = 100
    QUERY_USE_DENORMALIZED_SCREENING: bool = True
    HIGH_ADMIN_SCORE_THRESHOLD: int = 80

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
