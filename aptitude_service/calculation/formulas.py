# 基础计算公式
import math


def round_half_up(value: float) -> int:
    """四舍五入到整数（.5向上取整，与报表历史数据保持一致）"""
    if value is None or not math.isfinite(value):
        return 0
    return int(math.floor(value + 0.5))


def safe_divide(numerator: float, denominator: float) -> float:
    """安全除法，分母为0时返回0"""
    if not denominator:
        return 0.0
    result = numerator / denominator
    return result if math.isfinite(result) else 0.0
