"""Query sanitization and construction for CRM Bridge."""
