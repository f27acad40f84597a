from pydantic_settings import BaseSettings
from pathlib import Path


class Settings(BaseSettings):
    # 项目信息
    APP_NAME: str = "Fleet Assets"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"

    # 数据库
    DATABASE_DIR: Path = Path(__file__).resolve().parent.parent / "data"
    DATABASE_NAME: str = "fleet_assets.db"

    @property
    def DATABASE_URL(self) -> str:
        self.DATABASE_DIR.mkdir(parents=True, exist_ok=True)
        return f"sqlite+aiosqlite:///{self.DATABASE_DIR / self.DATABASE_NAME}"

    # JWT
    JWT_SECRET_KEY: str = "dev-secret-key-change-in-production"
    JWT_ALGORITHM: str = "HS256"
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24 * 7  # 7 天

    # CORS
    CORS_ORIGINS: list[str] = ["http://localhost:8081", "http://localhost:3000"]

    # 财年：起始月份（7 = 每年 7 月 1 日开始新财年），规划年 = 当前财年 + 偏移
    FISCAL_YEAR_START_MONTH: int = 7
    PLANNING_YEAR_OFFSET: int = 1

    # 对象缓存过期时间（秒）
    OBJECT_CACHE_EXPIRE_SECONDS: int = 300

    # 后台重算任务：最大尝试次数、重试退避基数（秒）
    RECALC_MAX_ATTEMPTS: int = 3
    RECALC_RETRY_BACKOFF_SECONDS: float = 0.5

    # 批量导入单次最大行数
    IMPORT_MAX_ROWS: int = 500

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
