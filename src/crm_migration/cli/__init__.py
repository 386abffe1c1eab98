"""Command-line interface for CRM Bridge."""
