# locust applies gevent monkey-patching on import; it must happen before any
# other test module imports ssl (via requests/urllib3), so import it first.
import locust  # noqa: F401
