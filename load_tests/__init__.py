"""
Load tests for the GitOps Platform using Locust.

Run with:
    PYTHONPATH=. BASE_URL=https://gitops-platform.example.com LOAD_PROFILE=basic \
        locust -f load_tests/locustfile.py --headless

Or through the deploy CLI:
    python -m deploy loadtest --profile stress --host https://gitops-platform.example.com

Profiles (see profiles.py):
    - basic:  up to 50 users over 26 minutes, p95 < 500ms, errors < 5%
    - stress: up to 300 users over 31 minutes, p95 < 1s, errors < 10%
    - spike:  jumps to 1000 users, p95 < 2s, errors < 20%
"""
