"""
Test Suite Initialization

Lectern test configuration.
"""
