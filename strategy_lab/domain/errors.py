"""
策略实验室异常类定义
"""


class StrategyLabError(Exception):
    """错误基类"""

    def __init__(self, message: str, raw_error: Exception = None):
        super().__init__(message)
        self.raw_error = raw_error


class ConfigurationError(StrategyLabError):
    """配置错误（对当前调用致命，不影响冠军状态）"""
    pass


class SchemaValidationError(ConfigurationError):
    """参数 Schema 缺失或非法"""
    pass


class MissingDatasetError(ConfigurationError):
    """数据集不存在"""
    pass


class InsufficientDataError(ConfigurationError):
    """K线数量不足"""
    pass


class StoreError(StrategyLabError):
    """记录存储错误"""
    pass


class TransientStoreError(StoreError):
    """瞬时存储错误（可重试）"""
    pass


class RecordNotFoundError(StoreError):
    """记录不存在"""
    pass


class ConcurrencyError(StoreError):
    """乐观锁版本冲突"""
    pass
