"""
配置模块汇总

从各个子模块导入所有配置，并统一导出：from config import XXX
"""

from .paths import *
from .settings import *
