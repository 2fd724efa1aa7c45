"""利润分析看板的配置模型，支持环境变量加载。"""

import os
from dataclasses import dataclass, field

DATE_PRESETS = ("none", "today", "this_week", "last_week", "this_month", "last_month", "custom")


@dataclass
class AnalysisConfig:
    """
    定义分析表计算层面的默认行为。

    属性:
        default_currency (str): 未指定国家时（例如全局看板）使用的展示币种。
        include_drafts (bool): 分析表是否默认包含 Draft 状态的商品。
        date_preset (str): 每日广告费的默认日期筛选，`none` 表示不筛选。
        debounce_seconds (float): 覆盖值编辑的防抖间隔（秒）。
    """

    default_currency: str = "USD"
    include_drafts: bool = False
    date_preset: str = "none"
    debounce_seconds: float = 0.8

    @classmethod
    def from_env(cls, prefix: str = "ANALYSIS_") -> "AnalysisConfig":
        """
        功能说明:
            从环境变量加载分析表相关配置。
        参数:
            prefix (str): 环境变量前缀。
        返回:
            AnalysisConfig: 填充完成的配置实例。
        """
        default_currency = os.getenv(f"{prefix}DEFAULT_CURRENCY", "USD").upper()
        include_drafts_raw = os.getenv(f"{prefix}INCLUDE_DRAFTS", "0").lower()
        include_drafts = include_drafts_raw in {"1", "true", "yes"}
        date_preset = os.getenv(f"{prefix}DATE_PRESET", "none").lower()
        if date_preset not in DATE_PRESETS:
            # 非法取值回退为不筛选，避免启动即失败。
            date_preset = "none"
        debounce_seconds = float(os.getenv(f"{prefix}DEBOUNCE_SECONDS", "0.8"))
        return cls(
            default_currency=default_currency,
            include_drafts=include_drafts,
            date_preset=date_preset,
            debounce_seconds=debounce_seconds,
        )


@dataclass
class StorageConfig:
    """
    描述分析数据与快照的持久化设置。

    属性:
        enabled (bool): 是否启用 SQLite 持久化能力。
        db_path (str): SQLite 文件路径，默认位于项目根目录。
    """

    enabled: bool = False
    db_path: str = "profit_dashboard.sqlite3"

    @classmethod
    def from_env(cls, prefix: str = "STORAGE_") -> "StorageConfig":
        """
        功能说明:
            从环境变量读取持久化相关配置。
        参数:
            prefix (str): 变量名前缀。
        返回:
            StorageConfig: 启用标识以及数据库路径配置。
        """
        enabled_raw = os.getenv(f"{prefix}ENABLED", "0").lower()
        enabled = enabled_raw in {"1", "true", "yes"}
        db_path = os.getenv(f"{prefix}DB_PATH", "profit_dashboard.sqlite3")
        return cls(enabled=enabled, db_path=db_path)


@dataclass
class AppConfig:
    """
    顶层组合配置，聚合分析、存储与日志设置。

    属性:
        analysis (AnalysisConfig): 分析表运行参数。
        storage (StorageConfig): 持久化相关设置。
        log_level (str): 入口程序使用的日志级别。
    """

    analysis: AnalysisConfig = field(default_factory=AnalysisConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "AppConfig":
        """
        功能说明:
            统一从环境变量载入所有子配置。
        返回:
            AppConfig: 完整的应用配置实例。
        """
        return cls(
            analysis=AnalysisConfig.from_env(),
            storage=StorageConfig.from_env(),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )
