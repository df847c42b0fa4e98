"""
Load test for the GitOps Platform using Locust.

Run from the project root with:
    PYTHONPATH=. BASE_URL=https://gitops-platform.example.com LOAD_PROFILE=basic \
        locust -f load_tests/locustfile.py --headless

The load shape follows LOAD_PROFILE (basic, stress or spike), so -u/-r/-t
are not needed. The process exits with code 1 when the pre-run health
check fails or any threshold of the profile is violated, and 0 otherwise,
even when some requests failed.
"""

import logging
import os
import random

from locust import HttpUser, LoadTestShape, between, events, task
from locust.exception import StopUser

from load_tests.checks import HEADERS, REQUEST_TIMEOUT, CheckRecorder, evaluate_thresholds, check_health
from load_tests.data import (
    STATIC_ASSETS,
    first_product,
    has_key,
    is_json,
    json_body,
    order_payload,
    registration_payload,
    search_path,
)
from load_tests.profiles import get_profile, spawn_rate_at, users_at

logger = logging.getLogger(__name__)

BASE_URL = os.environ.get("BASE_URL", "https://gitops-platform.example.com")
PROFILE = get_profile(os.environ.get("LOAD_PROFILE", "basic"))

recorder = CheckRecorder()
state = {"healthy": True}


class PlatformUser(HttpUser):
    """
    One visitor walking through the platform.

    Every iteration runs the full journey in order: homepage, API health,
    registration, product listing, search, order creation and a static
    asset, then thinks for 1-3 seconds.
    """

    host = BASE_URL
    wait_time = between(1, 3)

    def on_start(self):
        if not state["healthy"]:
            raise StopUser()
        self.client.headers.update(HEADERS)

    def verify(self, response, flow, statuses, max_seconds):
        """Record the status and timing checks of a flow; mark the request failed on a bad status"""
        ok = recorder.status(f"{flow} status is {'/'.join(map(str, statuses))}", response.status_code in statuses)
        recorder.check(f"{flow} response time < {max_seconds}s", response.elapsed.total_seconds() < max_seconds)
        if ok:
            response.success()
        else:
            response.failure(f"{flow} failed: {response.status_code}")
        return ok

    @task
    def journey(self):
        self.homepage()
        self.api_health()
        self.register_user()
        self.list_products()
        self.search_products()
        self.create_order()
        self.static_asset()

    def homepage(self):
        with self.client.get("/", timeout=REQUEST_TIMEOUT, catch_response=True, name="homepage") as response:
            self.verify(response, "homepage", (200,), 2)
            recorder.check("homepage contains title", "GitOps Platform" in response.text)

    def api_health(self):
        with self.client.get("/api/health", timeout=REQUEST_TIMEOUT, catch_response=True) as response:
            self.verify(response, "health check", (200,), 1)
            recorder.check("health check returns JSON", is_json(response))

    def register_user(self):
        with self.client.post(
            "/api/users/register",
            json=registration_payload(),
            timeout=REQUEST_TIMEOUT,
            catch_response=True,
        ) as response:
            self.verify(response, "registration", (201,), 3)
            recorder.check("registration returns user ID", has_key(json_body(response), "id"))

    def list_products(self):
        with self.client.get("/api/products", timeout=REQUEST_TIMEOUT, catch_response=True) as response:
            self.verify(response, "products list", (200,), 2)
            recorder.check("products list returns array", isinstance(json_body(response), list))

    def search_products(self):
        with self.client.get(
            search_path(),
            timeout=REQUEST_TIMEOUT,
            catch_response=True,
            name="/api/products/search",
        ) as response:
            self.verify(response, "search", (200,), 2)

    def create_order(self):
        response = self.client.get("/api/products", timeout=REQUEST_TIMEOUT, name="/api/products [order]")
        if response.status_code != 200:
            return
        product = first_product(json_body(response))
        if product is None:
            logger.debug("No products to order")
            return

        with self.client.post(
            "/api/orders",
            json=order_payload(product),
            timeout=REQUEST_TIMEOUT,
            catch_response=True,
        ) as response:
            self.verify(response, "order creation", (201,), 3)
            recorder.check("order creation returns order ID", has_key(json_body(response), "orderId"))

    def static_asset(self):
        asset = random.choice(STATIC_ASSETS)
        with self.client.get(asset, timeout=REQUEST_TIMEOUT, catch_response=True) as response:
            self.verify(response, "static asset", (200, 304), 1)


class StagedShape(LoadTestShape):
    """Ramp users through the stages of LOAD_PROFILE"""

    stages = list(PROFILE.stages)

    def tick(self):
        if not state["healthy"]:
            return None
        run_time = self.get_run_time()
        users = users_at(self.stages, run_time)
        if users is None:
            return None
        return (users, spawn_rate_at(self.stages, run_time))


@events.test_start.add_listener
def on_test_start(environment, **kwargs):
    logger.info("Starting %s load test against %s", PROFILE.name, environment.host or BASE_URL)
    logger.info(
        "%d stages, %ds total, peak %d users",
        len(PROFILE.stages), PROFILE.total_duration, PROFILE.peak_users,
    )
    recorder.reset()
    state["healthy"] = check_health(environment.host or BASE_URL)
    if not state["healthy"]:
        logger.error("Health check failed, aborting test")


@events.test_stop.add_listener
def on_test_stop(environment, **kwargs):
    stats = environment.stats.total
    logger.info("Load test complete")
    logger.info("Total requests: %d", stats.num_requests)
    logger.info("Avg response time: %.2fms", stats.avg_response_time)
    logger.info("Error rate: %.2f%%", recorder.error_rate * 100)
    for name in recorder.names:
        logger.info("  %s: %.1f%% passed", name, recorder.pass_rate(name) * 100)


@events.quitting.add_listener
def on_quitting(environment, **kwargs):
    if not state["healthy"]:
        environment.process_exit_code = 1
        return

    stats = environment.stats.total
    p95 = stats.get_response_time_percentile(0.95) if stats.num_requests else None
    violations = evaluate_thresholds(PROFILE.thresholds, p95, stats.fail_ratio, recorder.error_rate)
    for violation in violations:
        logger.error("Threshold failed: %s", violation)
    environment.process_exit_code = 1 if violations else 0
