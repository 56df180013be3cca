"""Record ingestion, rule evaluation and match routing."""
