# Session Message Test Suite
"""
Comprehensive test suite including:
- Unit tests (primitives, header, framing, envelope)
- Integration tests
- Security tests (malformed and tampered inputs)

Run with: pytest
Coverage: coverage run -m pytest && coverage report
"""
