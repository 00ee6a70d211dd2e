"""Signal Engine: multi-tenant metric ingestion and threshold alerting."""

__version__ = "0.1.0"
