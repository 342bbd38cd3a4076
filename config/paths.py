"""
路径配置模块
"""
import os

# ==================== 数据存储路径 ====================

SQLITE_DB_PATH = os.getenv("SQLITE_DB_PATH", "strategy_lab.db")

# ==================== 日志路径 ====================

LOG_DIR = os.getenv("LOG_DIR", "logs")
LOG_FILE = os.getenv("LOG_FILE", "strategy_lab.log")
