"""パーセンテージロールアウト用のバケット計算"""

from __future__ import annotations

import hashlib
import math
from decimal import Decimal

from .models import Scalar

BUCKET_COUNT = 100


def _format_number(value: float) -> str:
    # ECMAScript の Number::toString と同じ規則で整形する
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "Infinity" if value > 0 else "-Infinity"
    if value == 0:
        return "0"
    if value < 0:
        return "-" + _format_number(-value)

    # repr は往復可能な最短桁を返す
    _, digit_tuple, exponent = Decimal(repr(value)).normalize().as_tuple()
    digits = "".join(str(d) for d in digit_tuple)
    k = len(digits)
    n = exponent + k
    if k <= n <= 21:
        return digits + "0" * (n - k)
    if 0 < n <= 21:
        return f"{digits[:n]}.{digits[n:]}"
    if -6 < n <= 0:
        return "0." + "0" * -n + digits
    e = n - 1
    mantissa = digits if k == 1 else f"{digits[0]}.{digits[1:]}"
    return f"{mantissa}e{'+' if e >= 0 else '-'}{abs(e)}"


def stringify_user_id(value: Scalar) -> str:
    """userId を JSON / JavaScript の文字列表記に揃える。

    ``True`` は ``"true"``、``3.0`` は ``"3"``、``1e21`` は ``"1e+21"`` になる。
    """
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        return _format_number(value)
    return str(value)


def calculate_bucket(user_id: Scalar, flag_key: str) -> int:
    """(user_id, flag_key) から 0〜99 の決定的なバケットを計算する。

    ``"{user_id}:{flag_key}"`` の MD5 の先頭 8 桁を 32bit 符号なし整数として読み、
    100 で割った余りを返す。
    """
    seed = f"{stringify_user_id(user_id)}:{flag_key}"
    digest = hashlib.md5(seed.encode("utf-8")).hexdigest()  # nosec B324
    return int(digest[:8], 16) % BUCKET_COUNT
