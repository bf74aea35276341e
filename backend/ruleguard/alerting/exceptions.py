class QueryBuilderError(ValueError):
    """Raised when an alert rule condition tree cannot be compiled."""
