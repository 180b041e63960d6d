"""Option hedge assistant: hedge suggestions and tracked-position alerts for Deribit."""

__version__ = "0.1.0"
