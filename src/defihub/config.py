"""配置加载模块 - 从环境变量和 .env 文件加载配置。"""

from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LogFormat(str, Enum):
    """日志格式枚举。"""

    JSON = "json"
    CONSOLE = "console"


class Settings(BaseSettings):
    """系统配置设置。

    从环境变量和 .env 文件加载配置。
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==================== 借贷参数 ====================
    liquidation_bonus: Decimal = Field(
        default=Decimal("0.05"),
        ge=Decimal("0"),
        le=Decimal("0.5"),
        description="清算奖励（抵押物折扣比例）",
    )

    # ==================== 永续合约参数 ====================
    default_max_leverage: Decimal = Field(
        default=Decimal("20"),
        ge=Decimal("1"),
        le=Decimal("125"),
        description="未配置市场的最大杠杆",
    )

    # ==================== 跨链桥参数 ====================
    bridge_base_fee_rate: Decimal = Field(
        default=Decimal("0.001"),
        ge=Decimal("0"),
        lt=Decimal("1"),
        description="跨链基础手续费率",
    )
    bridge_gas_fee: Decimal = Field(
        default=Decimal("0.005"),
        ge=Decimal("0"),
        description="跨链固定 gas 费用",
    )
    bridge_settlement_delay_sec: float = Field(
        default=5.0,
        ge=0.0,
        le=3600.0,
        description="跨链转账结算延迟（秒）",
    )

    # ==================== 日志配置 ====================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="日志级别",
    )
    log_format: LogFormat = Field(
        default=LogFormat.CONSOLE,
        description="日志输出格式",
    )

    # ==================== 数据存储 ====================
    journal_dir: Path = Field(
        default=Path("data/journal"),
        description="操作日志存储目录",
    )

    @field_validator("journal_dir", mode="before")
    @classmethod
    def parse_journal_dir(cls, v: str | Path) -> Path:
        """将字符串转换为 Path 对象。"""
        return Path(v) if isinstance(v, str) else v

    def ensure_directories(self) -> None:
        """确保必要的目录存在。"""
        self.journal_dir.mkdir(parents=True, exist_ok=True)


# 全局配置实例（延迟初始化）
_settings: Settings | None = None


def get_settings() -> Settings:
    """获取全局配置实例。"""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
