"""
Tests for the ReLU Region Explorer
==================================

Run all tests:
    pytest tests/

Skip the slower training/web tests:
    pytest tests/ -m "not slow"
"""
