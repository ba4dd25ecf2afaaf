"""Multi-tenant conversation memory for small-business chat assistants."""

__version__ = "0.1.0"
