# StoreGuard Test Suite
"""
Test suite including:
- Unit tests per service
- Login flow tests across services
- Security tests (tampering, brute force, invalid input)

Run with: pytest
"""
