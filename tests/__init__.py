"""
Session Booking Tests

Unit tests run against a temporary SQLite database (aiosqlite) with a
fixed clock; no PostgreSQL or Redis is needed.

Running Tests:
    # Run all tests with pytest
    pytest tests -v

    # Run the HTTP integration tests only
    pytest tests/test_api_integration.py -v

    # Smoke tests against a running server
    pytest tests/e2e/smoke_test_e2e.py -v

Test Coverage:
    - Schedule value types and payload normalization
    - Schedule store (templates, overrides, unavailable flag)
    - Availability resolution
    - Booking ledger (atomic reserve, idempotent release, concurrency)
    - Booking policy (cap, cooldown, published slots)
    - Approval workflow and notifications
    - Rate limiting
    - API endpoints and error mapping
"""
