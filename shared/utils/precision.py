"""数量步进工具：下单前把数量裁剪到交易所的 LOT_SIZE 步进。"""

from __future__ import annotations

from decimal import ROUND_FLOOR, Decimal


def decimals_from_step(step: float) -> int:
    """根据 step（通常是 10 的负次幂）推导小数位数。"""
    d = Decimal(str(step))
    if d <= 0:
        return 0
    return max(0, -int(d.normalize().as_tuple().exponent))


def floor_to_step(value: float, step: float | None) -> float:
    """把 value 向下裁剪到 step 的整数倍（用 Decimal 计算，避免 float 噪声）。"""
    if not step or step <= 0:
        return float(value)
    sd = Decimal(str(step))
    n = (Decimal(str(value)) / sd).to_integral_value(rounding=ROUND_FLOOR)
    return float((n * sd).quantize(Decimal(1).scaleb(-decimals_from_step(step))))


def format_qty(value: float, step: float | None = None) -> str:
    """下单参数里的数量字符串；无 step 时最多 8 位小数并去掉尾随 0。"""
    if not step:
        return f"{float(value):.8f}".rstrip("0").rstrip(".")
    return f"{floor_to_step(value, step):.{decimals_from_step(step)}f}"
