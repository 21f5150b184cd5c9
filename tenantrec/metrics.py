"""Metrics service for tracking recommendation performance.

Singleton service to track inference calls, latency and retrain outcomes.
"""

import threading
from typing import Dict


class MetricsService:
    """Singleton service for tracking service metrics.

    Thread-safe counter and latency tracking for inference calls.
    """

    _instance = None
    _lock = threading.Lock()

    def __new__(cls):
        """Create singleton instance."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super(MetricsService, cls).__new__(cls)
                    cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        """Initialize metrics counters."""
        if self._initialized:
            return

        self._lock = threading.Lock()
        self._inference_count = 0
        self._empty_result_count = 0
        self._total_latency_ms = 0.0
        self._min_latency_ms = float('inf')
        self._max_latency_ms = 0.0
        self._retrain_success_count = 0
        self._retrain_failure_count = 0
        self._retrain_cold_start_count = 0
        self._initialized = True

    def record_inference(self, latency_ms: float, num_results: int = 0) -> None:
        """Record an inference call with its latency.

        Args:
            latency_ms: Latency in milliseconds
            num_results: Number of products returned
        """
        with self._lock:
            self._inference_count += 1
            self._total_latency_ms += latency_ms
            if num_results == 0:
                self._empty_result_count += 1

            if latency_ms < self._min_latency_ms:
                self._min_latency_ms = latency_ms

            if latency_ms > self._max_latency_ms:
                self._max_latency_ms = latency_ms

    def record_retrain(self, success: bool) -> None:
        with self._lock:
            if success:
                self._retrain_success_count += 1
            else:
                self._retrain_failure_count += 1

    def record_retrain_cold_start(self) -> None:
        """Record a retrain that found no purchase history to train on."""
        with self._lock:
            self._retrain_cold_start_count += 1

    def get_metrics(self) -> Dict:
        """Get current metrics.

        Returns:
            Dictionary with metrics including:
            - inference_count: Total number of inference calls
            - empty_result_count: Calls that returned no products
            - average_latency_ms: Average latency in milliseconds
            - min_latency_ms: Minimum latency observed
            - max_latency_ms: Maximum latency observed
            - retrain_success_count / retrain_failure_count
            - retrain_cold_start_count: Retrains skipped for lack of history
        """
        with self._lock:
            avg_latency = (
                self._total_latency_ms / self._inference_count
                if self._inference_count > 0
                else 0.0
            )

            return {
                "inference_count": self._inference_count,
                "empty_result_count": self._empty_result_count,
                "average_latency_ms": round(avg_latency, 2),
                "min_latency_ms": round(self._min_latency_ms, 2) if self._min_latency_ms != float('inf') else 0.0,
                "max_latency_ms": round(self._max_latency_ms, 2),
                "retrain_success_count": self._retrain_success_count,
                "retrain_failure_count": self._retrain_failure_count,
                "retrain_cold_start_count": self._retrain_cold_start_count,
            }

    def reset(self) -> None:
        """Reset all metrics (useful for testing)."""
        with self._lock:
            self._inference_count = 0
            self._empty_result_count = 0
            self._total_latency_ms = 0.0
            self._min_latency_ms = float('inf')
            self._max_latency_ms = 0.0
            self._retrain_success_count = 0
            self._retrain_failure_count = 0
            self._retrain_cold_start_count = 0


# Global singleton instance
metrics_service = MetricsService()
