"""Request and response schemas for the carshare API."""
