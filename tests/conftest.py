"""Shared pytest setup for the bill tracker tests."""

from dotenv import load_dotenv

# Local .env overrides apply to Settings() built in tests
load_dotenv()
