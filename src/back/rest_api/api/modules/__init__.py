"""Feature modules for rest-api."""
