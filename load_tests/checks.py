"""
Check bookkeeping and threshold evaluation for load-test runs
"""

import logging
from collections import defaultdict
from typing import Dict, List, Optional

import requests

from load_tests.profiles import Thresholds

logger = logging.getLogger(__name__)

HEADERS = {
    "Content-Type": "application/json",
    "User-Agent": "locust-load-test/1.0",
}
REQUEST_TIMEOUT = 30


class CheckRecorder:
    """
    Counts passed and failed checks by name, plus the errors rate

    The errors rate only counts status checks: one sample per flow,
    failed when the flow got an unexpected status code.
    """

    def __init__(self):
        self.passes: Dict[str, int] = defaultdict(int)
        self.failures: Dict[str, int] = defaultdict(int)
        self.error_samples = 0
        self.error_count = 0

    def check(self, name: str, passed: bool) -> bool:
        if passed:
            self.passes[name] += 1
        else:
            self.failures[name] += 1
        return passed

    def status(self, name: str, passed: bool) -> bool:
        """Record a status check; it also feeds the errors rate"""
        self.error_samples += 1
        if not passed:
            self.error_count += 1
        return self.check(name, passed)

    @property
    def error_rate(self) -> float:
        if not self.error_samples:
            return 0.0
        return self.error_count / self.error_samples

    def pass_rate(self, name: str) -> float:
        total = self.passes[name] + self.failures[name]
        return self.passes[name] / total if total else 0.0

    @property
    def names(self) -> List[str]:
        return sorted(set(self.passes) | set(self.failures))

    def reset(self):
        self.passes.clear()
        self.failures.clear()
        self.error_samples = 0
        self.error_count = 0


def evaluate_thresholds(
    thresholds: Thresholds,
    p95_ms: Optional[float],
    fail_ratio: float,
    error_rate: float,
) -> List[str]:
    """
    Compare a run's statistics against its profile's thresholds

    Args:
        thresholds: The profile's limits
        p95_ms: 95th percentile response time, None when nothing was sent
        fail_ratio: Share of requests Locust marked failed
        error_rate: Share of flows whose status check failed

    Returns:
        Human readable violation messages, empty when the run passed
    """
    violations = []
    if p95_ms is not None and p95_ms >= thresholds.p95_ms:
        violations.append(f"p95 response time {p95_ms:.0f}ms >= {thresholds.p95_ms:.0f}ms")
    if fail_ratio >= thresholds.max_fail_ratio:
        violations.append(f"failed requests {fail_ratio:.2%} >= {thresholds.max_fail_ratio:.0%}")
    if thresholds.max_error_rate is not None and error_rate >= thresholds.max_error_rate:
        violations.append(f"error rate {error_rate:.2%} >= {thresholds.max_error_rate:.0%}")
    return violations


def check_health(base_url: str, session: Optional[requests.Session] = None) -> bool:
    """GET {base_url}/health once before the run; True when it answers 200"""
    http = session or requests.Session()
    url = f"{base_url.rstrip('/')}/health"
    try:
        response = http.get(url, headers=HEADERS, timeout=REQUEST_TIMEOUT)
    except requests.RequestException as exc:
        logger.error("Health check %s failed: %s", url, exc)
        return False
    if response.status_code != 200:
        logger.error("Health check %s returned %s", url, response.status_code)
        return False
    return True
