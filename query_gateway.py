"""
Read-only query gateway in front of InfluxDB
Every statement is validated before it is forwarded; rejected statements are never retried
"""
from typing import Dict, Optional

from errors import ValidationError
from logger import debug, warning
from query_validator import validate_query


class QueryGateway:
    """Validates statements and forwards the safe ones to InfluxStorage.query()."""

    def __init__(self, storage):
        """
        Args:
            storage: InfluxStorage (or anything with query(statement, epoch=None))
        """
        self.storage = storage

    def check(self, statement) -> str:
        """
        Validate a statement.

        Returns:
            str: The statement, unchanged

        Raises:
            ValidationError: The statement is empty, not read-only, or crosses databases
        """
        result = validate_query(statement)
        if not result.valid:
            preview = statement[:100] if isinstance(statement, str) else repr(statement)
            warning('Blocked query: %s - "%s"', result.error, preview)
            raise ValidationError(result.error, query=statement)
        return statement

    def execute(self, statement, epoch: Optional[str] = None) -> Dict:
        """
        Validate and run a statement.

        Raises:
            ValidationError: Statement rejected (raised before any I/O)
            ResponseError / RequestTimeoutError: InfluxDB failure
        """
        self.check(statement)
        debug("Forwarding validated query to InfluxDB")
        return self.storage.query(statement, epoch=epoch)
