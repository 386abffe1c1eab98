"""Shared utilities for CRM Bridge."""
