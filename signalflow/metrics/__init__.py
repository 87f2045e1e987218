from .collector import ApproachSampler, MetricSnapshot, MetricsCollector

__all__ = ["ApproachSampler", "MetricSnapshot", "MetricsCollector"]
