"""配置加载模块 - 从环境变量和 .env 文件加载配置。"""

from enum import Enum
from pathlib import Path
from typing import Annotated, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class RunMode(str, Enum):
    """运行模式枚举。"""

    PAPER = "paper"  # 纸交易
    LIVE = "live"  # 实盘


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

    # ==================== 运行模式 ====================
    mode: RunMode = Field(default=RunMode.PAPER, description="运行模式: paper 或 live")

    # ==================== OKX API ====================
    okx_api_key: str = Field(default="", description="OKX API Key")
    okx_secret_key: str = Field(default="", description="OKX Secret Key")
    okx_passphrase: str = Field(default="", description="OKX API Passphrase")
    okx_base_url: str = Field(default="https://www.okx.com", description="OKX REST 地址")
    okx_simulated_trading: bool = Field(default=False, description="是否使用 OKX 模拟盘")
    okx_timeout: float = Field(default=10.0, gt=0, description="OKX 请求超时（秒）")
    okx_margin_mode: Literal["isolated", "cross"] = Field(
        default="isolated",
        description="保证金模式",
    )

    # ==================== DeepSeek API ====================
    deepseek_api_key: str = Field(default="", description="DeepSeek API Key")
    deepseek_model: str = Field(default="deepseek-chat", description="DeepSeek 模型名称")
    deepseek_url: str = Field(
        default="https://api.deepseek.com/chat/completions",
        description="DeepSeek chat completions 地址",
    )
    deepseek_timeout: int = Field(default=60, description="LLM 调用超时（秒）")
    deepseek_temperature: float = Field(default=1.0, ge=0.0, le=2.0, description="采样温度")

    # ==================== 交易标的 ====================
    instruments: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: ["ETH-USDT-SWAP"],
        description="交易的永续合约列表",
    )
    contract_values: dict[str, float] = Field(
        default_factory=lambda: {
            "BTC-USDT-SWAP": 0.01,
            "ETH-USDT-SWAP": 0.1,
            "SOL-USDT-SWAP": 1.0,
            "DOGE-USDT-SWAP": 1000.0,
        },
        description="每张合约面值（币）",
    )
    min_order_size: float = Field(default=0.01, gt=0, description="最小下单张数")
    lot_size: float = Field(default=0.01, gt=0, description="下单张数精度")
    taker_fee_rate: float = Field(default=0.0005, ge=0, le=0.01, description="吃单手续费率")

    # ==================== 资金阶段 ====================
    stage_1_max_equity: float = Field(default=20.0, gt=0, description="阶段一权益上限 (U)")
    stage_2_max_equity: float = Field(default=80.0, gt=0, description="阶段二权益上限 (U)")
    stage_1_leverage: float = Field(default=20.0, ge=1, description="阶段一杠杆")
    stage_2_leverage: float = Field(default=10.0, ge=1, description="阶段二杠杆")
    stage_3_leverage: float = Field(default=5.0, ge=1, description="阶段三杠杆")
    stage_1_risk_ratio: float = Field(default=0.5, gt=0, le=1, description="阶段一开仓风险比例")
    stage_2_risk_ratio: float = Field(default=0.3, gt=0, le=1, description="阶段二开仓风险比例")
    stage_3_risk_ratio: float = Field(default=0.2, gt=0, le=1, description="阶段三开仓风险比例")

    # ==================== 仓位上限 ====================
    open_cap_ratio: float = Field(
        default=0.95,
        gt=0,
        le=1,
        description="开仓保证金硬上限（可用权益比例）",
    )
    add_risk_ratio: float = Field(default=0.2, gt=0, le=1, description="加仓风险比例")
    add_cap_ratio: float = Field(
        default=0.3,
        gt=0,
        le=1,
        description="加仓保证金硬上限（可用权益比例）",
    )
    max_leverage: float = Field(default=50.0, ge=1, le=125, description="允许的最大杠杆")

    # ==================== 执行参数 ====================
    margin_shrink_factor: float = Field(
        default=0.8,
        gt=0,
        lt=1,
        description="保证金不足时的下单量缩减系数",
    )
    max_margin_retries: int = Field(default=2, ge=0, le=5, description="保证金不足重试次数")
    breakeven_buffer_pct: float = Field(
        default=0.3,
        ge=0,
        le=5,
        description="脱离保本区阈值（百分比）",
    )

    # ==================== 绩效调节 ====================
    performance_lookback: int = Field(default=30, ge=3, le=500, description="夏普比率回看样本数")
    negative_sharpe_modifier: float = Field(
        default=0.5,
        gt=0,
        le=1,
        description="夏普为负时的风险缩放系数",
    )

    # ==================== 纸交易 ====================
    paper_initial_equity: float = Field(default=100.0, gt=0, description="纸交易初始权益 (U)")

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
        description="交易日志存储目录",
    )

    @field_validator("journal_dir", mode="before")
    @classmethod
    def parse_journal_dir(cls, v: str | Path) -> Path:
        """将字符串转换为 Path 对象。"""
        return Path(v) if isinstance(v, str) else v

    @field_validator("instruments", mode="before")
    @classmethod
    def parse_instruments(cls, v: str | list[str]) -> list[str]:
        """支持逗号分隔的字符串。"""
        if isinstance(v, str):
            return [item.strip().upper() for item in v.split(",") if item.strip()]
        return v

    def ensure_directories(self) -> None:
        """确保必要的目录存在。"""
        self.journal_dir.mkdir(parents=True, exist_ok=True)

    def contract_value(self, instrument: str) -> float:
        """获取合约面值，未配置时抛出异常。"""
        value = self.contract_values.get(instrument)
        if value is None or value <= 0:
            raise ValueError(f"unknown_contract_value: {instrument}")
        return float(value)

    @property
    def is_paper_mode(self) -> bool:
        """是否为纸交易模式。"""
        return self.mode == RunMode.PAPER

    @property
    def is_live_mode(self) -> bool:
        """是否为实盘模式。"""
        return self.mode == RunMode.LIVE

    def validate_for_live(self) -> list[str]:
        """验证实盘模式的必要配置，返回缺失项列表。"""
        missing = []
        if not self.okx_api_key:
            missing.append("OKX_API_KEY")
        if not self.okx_secret_key:
            missing.append("OKX_SECRET_KEY")
        if not self.okx_passphrase:
            missing.append("OKX_PASSPHRASE")
        if not self.deepseek_api_key:
            missing.append("DEEPSEEK_API_KEY")
        return missing


# 全局配置实例（延迟初始化）
_settings: Settings | None = None


def get_settings() -> Settings:
    """获取全局配置实例。"""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reload_settings() -> Settings:
    """重新加载配置。"""
    global _settings
    _settings = Settings()
    return _settings
