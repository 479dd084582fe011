"""OpenTelemetry メトリクス定義"""

from __future__ import annotations

from opentelemetry import metrics

_meter = metrics.get_meter("flipflap", version="0.1.0")

flag_evaluations_total = _meter.create_counter(
    name="flag_evaluations_total",
    description="Total number of flag evaluations by reason",
    unit="1",
)

flag_cache_lookups_total = _meter.create_counter(
    name="flag_cache_lookups_total",
    description="Total number of flag cache lookups by result",
    unit="1",
)

flag_cache_refresh_total = _meter.create_counter(
    name="flag_cache_refresh_total",
    description="Total number of full flag cache reloads by status",
    unit="1",
)
