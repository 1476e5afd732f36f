"""
Sparq Safety Tests

Unit tests live in tests/unit, the HTTP integration tests in
tests/test_safety_integration.py. Everything runs on in-memory storage
(or aiosqlite) with no Redis, webhook or Anthropic access required.

Running Tests:
    # Run all tests with pytest
    pytest -v

    # Run the API tests
    pytest tests/test_safety_integration.py -v

    # Run specific test
    pytest tests/test_safety_integration.py::test_crisis_detection -v

    # Smoke tests against a running instance (not collected by default)
    pytest tests/e2e/smoke_test_e2e.py -v

Test Coverage:
    - Indicator extraction and severity classification
    - Deep analysis gateway and fail-safe behavior
    - History tracking and escalation patterns
    - Resource matching by jurisdiction
    - Intervention planning and follow-ups
    - Alert lifecycle and escalation delivery
    - Safety plans and audit logging
    - Persistence (memory and SQL)
"""
