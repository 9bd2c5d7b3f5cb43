"""
Germy Auth API Test Suite

HTTP-level tests run against the FastAPI app with an in-memory database.

Test Files:
- conftest.py: Shared fixtures (database, engine, app, clients, accounts)
- test_auth_routes.py: Login, registration and session management
- test_approval_routes.py: Approval review over HTTP
- test_security_routes.py: Security events, alerts and revocation stats

Run Commands:
    # All API tests
    pytest germy_auth/api/tests/ -v

    # With coverage
    pytest germy_auth/api/tests/ --cov=germy_auth.api --cov-report=html
"""
