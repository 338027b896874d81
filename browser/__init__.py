"""Playwright session, runtime configuration, event log and HTTP surface."""
