"""配置加载模块 - 从环境变量和 .env 文件加载配置。"""

from enum import Enum
from pathlib import Path
from typing import Annotated, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class RunMode(str, Enum):
    """运行模式枚举。"""

    PAPER = "paper"  # 模拟盘
    LIVE = "live"  # 实盘


class LogFormat(str, Enum):
    """日志格式枚举。"""

    JSON = "json"
    CONSOLE = "console"


class Settings(BaseSettings):
    """交易员配置。

    从环境变量和 .env 文件加载，运行期间核心逻辑只读不写。
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==================== 运行模式 ====================
    mode: RunMode = Field(default=RunMode.PAPER, description="运行模式: paper 或 live")
    trader_id: str = Field(default="default", min_length=1, description="交易员 ID")
    trader_name: str = Field(default="AI Futures Trader", description="交易员名称")
    initial_balance: float = Field(default=1000.0, gt=0, description="初始资金（USDT）")

    # ==================== Binance API ====================
    binance_api_key: str = Field(default="", description="Binance API Key")
    binance_api_secret: str = Field(default="", description="Binance API Secret")
    binance_testnet: bool = Field(default=True, description="是否使用 Binance 测试网")
    exchange_timeout_sec: float = Field(
        default=10.0,
        gt=0,
        le=120,
        description="交易所请求超时（秒）",
    )

    # ==================== OpenRouter API ====================
    openrouter_api_key: str = Field(default="", description="OpenRouter API Key")
    openrouter_model: str = Field(
        default="deepseek/deepseek-chat",
        description="OpenRouter 模型名称",
    )
    openrouter_timeout: int = Field(
        default=120,
        ge=5,
        le=600,
        description="LLM 调用超时（秒）",
    )

    # ==================== 调度参数 ====================
    scan_interval_min: int = Field(default=3, ge=1, le=240, description="决策周期（分钟）")
    order_pause_sec: float = Field(
        default=1.0,
        ge=0.0,
        le=30.0,
        description="两次下单之间的间隔（秒）",
    )

    # ==================== 风控参数 ====================
    btc_eth_leverage: int = Field(default=5, ge=1, le=125, description="BTC/ETH 最大杠杆")
    altcoin_leverage: int = Field(default=5, ge=1, le=125, description="山寨币最大杠杆")
    max_positions: int = Field(default=3, ge=1, le=20, description="最大同时持仓数")
    max_daily_loss_pct: float = Field(
        default=10.0,
        gt=0,
        le=100,
        description="日亏损停机阈值（账户净值百分比）",
    )
    max_drawdown_pct: float = Field(
        default=20.0,
        gt=0,
        le=100,
        description="最大回撤停机阈值（相对初始资金百分比）",
    )
    stop_trading_minutes: int = Field(
        default=60,
        ge=1,
        le=10_080,
        description="触发风控后的冷却时长（分钟）",
    )
    premature_close_minutes: int = Field(
        default=30,
        ge=1,
        le=1440,
        description="持仓短于该时长视为过早平仓（分钟）",
    )

    # ==================== AI 学习 ====================
    enable_ai_learning: bool = Field(default=True, description="是否启用 AI 复盘总结")
    ai_learn_interval: int = Field(
        default=10,
        ge=1,
        le=1000,
        description="每隔多少个周期复盘一次",
    )
    performance_lookback_cycles: int = Field(
        default=100,
        ge=1,
        le=10_000,
        description="绩效分析回看周期数",
    )

    # ==================== 候选币池 ====================
    coin_pool: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: ["BTCUSDT", "ETHUSDT", "SOLUSDT", "BNBUSDT", "XRPUSDT"],
        description="候选币种列表",
    )
    min_open_interest_usd: float = Field(
        default=15_000_000.0,
        ge=0,
        description="非持仓币种的最小持仓价值（USD）",
    )
    intraday_interval: str = Field(default="3m", description="短周期 K 线")
    intraday_limit: int = Field(default=60, ge=30, le=1500, description="短周期 K 线数量")
    trend_interval: str = Field(default="4h", description="长周期 K 线")
    trend_limit: int = Field(default=60, ge=30, le=1500, description="长周期 K 线数量")

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
    data_dir: Path = Field(
        default=Path("data"),
        description="数据目录（SQLite 与模拟盘状态）",
    )

    @field_validator("data_dir", mode="before")
    @classmethod
    def parse_data_dir(cls, v: str | Path) -> Path:
        """支持 ~ 开头的路径。"""
        return Path(v).expanduser()

    @field_validator("coin_pool", mode="before")
    @classmethod
    def parse_coin_pool(cls, v: str | list[str]) -> list[str]:
        """支持逗号分隔的字符串，统一转为大写。"""
        items = v.split(",") if isinstance(v, str) else v
        return [item.strip().upper() for item in items if item and item.strip()]

    @property
    def db_path(self) -> Path:
        """SQLite 数据库文件路径。"""
        return self.data_dir / "trader.db"

    @property
    def paper_state_path(self) -> Path:
        """模拟盘状态文件路径。"""
        return self.data_dir / f"paper_{self.trader_id}.json"

    def ensure_directories(self) -> None:
        """确保必要的目录存在。"""
        self.data_dir.mkdir(parents=True, exist_ok=True)

    @property
    def is_paper_mode(self) -> bool:
        return self.mode is RunMode.PAPER

    @property
    def is_live_mode(self) -> bool:
        """实盘需要完整的 Binance 与 OpenRouter 密钥。"""
        return self.mode is RunMode.LIVE

    def leverage_cap(self, symbol: str) -> int:
        """按币种类别返回杠杆上限。"""
        if symbol in ("BTCUSDT", "ETHUSDT"):
            return self.btc_eth_leverage
        return self.altcoin_leverage

    def validate_for_live(self) -> list[str]:
        """实盘模式下缺失的密钥（按环境变量名）。"""
        required = {
            "BINANCE_API_KEY": self.binance_api_key,
            "BINANCE_API_SECRET": self.binance_api_secret,
            "OPENROUTER_API_KEY": self.openrouter_api_key,
        }
        return [name for name, value in required.items() if not value]


_settings: Settings | None = None


def get_settings() -> Settings:
    """进程内共享的配置，首次调用时从环境读取。"""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings

