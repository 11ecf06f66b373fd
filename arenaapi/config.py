from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List, Optional
from urllib.parse import quote_plus


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file="arenaapi/.env",
        env_file_encoding="utf-8",
        extra="allow",
    )
    # Application
    APP_NAME: str = "Arena Wallet API"
    PROJECT_NAME: str = "Arena Match & Wallet API"
    API_V1_STR: str = "/api/v1"
    ENVIRONMENT: str = "development"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Database
    POSTGRES_HOST: str = ""
    POSTGRES_PORT: int = 5432
    POSTGRES_USERNAME: str = ""
    POSTGRES_PASSWORD: str = ""
    POSTGRES_DATABASE: str = ""

    # 직접 지정 시 POSTGRES_* 조합보다 우선 (로컬/테스트용 sqlite 등)
    DATABASE_URL: Optional[str] = None
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20

    @property
    def database_url(self) -> str:
        """Construct database URL from individual components"""
        if self.DATABASE_URL:
            return self.DATABASE_URL

        # URL encode the password to handle special characters
        encoded_password = quote_plus(self.POSTGRES_PASSWORD)
        return f"postgresql+psycopg2://{self.POSTGRES_USERNAME}:{encoded_password}@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DATABASE}"

    # Security
    SECRET_KEY: str = ""
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    # Payment gateway (Razorpay)
    RAZORPAY_KEY_ID: str = ""
    RAZORPAY_KEY_SECRET: str = ""
    RAZORPAY_WEBHOOK_SECRET: str = ""
    MIN_DEPOSIT_AMOUNT: int = 10
    MAX_DEPOSIT_AMOUNT: int = 50000

    # Match rules
    JOINABLE_MATCH_STATUSES: List[str] = ["registration_open"]
    LEAVE_ALLOWED_STATUSES: List[str] = ["registration_open", "room_revealed"]
    LEAVE_CANCELLATION_FEE_RATE: float = 0.10  # 자발적 이탈 시 수수료율
    LEAVE_CUTOFF_MINUTES: int = 60  # 시작 N분 전부터 이탈 불가
    # [{"minutes_before_start": 180, "fee_rate": 0.25}, ...] 형태의 구간별 수수료
    LEAVE_FEE_TIERS: List[dict] = []
    ROOM_REVEAL_LEAD_MINUTES: int = 15
    REGISTRATION_LEAD_HOURS: int = 24
    MIN_MATCH_SLOTS: int = 2
    MAX_MATCH_SLOTS: int = 100

    # Withdrawal rules
    MIN_WITHDRAWAL_AMOUNT: int = 100
    MAX_PENDING_WITHDRAWALS: int = 1
    WITHDRAWAL_COOLDOWN_HOURS: int = 24  # 0이면 비활성화
    TDS_THRESHOLD: int = 10000  # 이 금액 초과 출금에만 TDS 적용
    TDS_RATE: float = 0.30

    # Timezone
    TIMEZONE: str = "Asia/Kolkata"


settings = Settings()
