"""
Monitoring and reporting
"""
from .metrics import BatchMetrics, BatchTiming
