"""
Test suite for the Clinic Scheduling Engine.

Contains unit tests for the scheduling engine and integration tests for the API.
"""
import os

# Set environment for testing
os.environ["TESTING"] = "1"
os.environ.setdefault("TEST_DATABASE_URL", "sqlite:///./test.db")
