from taskflow.stats.service import DataKind, StatItem, TimeRange, count_by_status

__all__ = ["DataKind", "StatItem", "TimeRange", "count_by_status"]
