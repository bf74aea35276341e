from .exceptions import QueryBuilderError
from .filters import QueryBuilderFilter
from .fluent import QueryBuilderFluentParser
from .querybuilder import QueryBuilderParser
from .schema import Schema

__all__ = [
    "QueryBuilderError",
    "QueryBuilderFilter",
    "QueryBuilderFluentParser",
    "QueryBuilderParser",
    "Schema",
]
