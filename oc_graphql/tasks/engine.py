# Copyright 2024-present Kensho Technologies, LLC.
from abc import ABCMeta, abstractmethod
from typing import Any, List, Mapping, Sequence, Union

from .typedefs import ExecutionStatusReport


# A result row is either a sequence of cell values, in which case the first row of the result
# set is the header naming the columns, or an already-keyed mapping of column name to value.
ResultRow = Union[Sequence[Any], Mapping[str, Any]]


class ExecutionEngine(metaclass=ABCMeta):
    """Base class defining the API of the external engine that executes compiled queries.

    Task tracking never executes queries itself. It hands compiled query text to an
    ExecutionEngine, remembers the execution id the engine returns, and later asks the engine
    about that execution's status and results. Implementations wrap a concrete query service,
    e.g. a serverless SQL engine over object storage.

    Every method should raise EngineError if the backend fails to service the request.
    """

    @abstractmethod
    def start_query_execution(self, query: str) -> str:
        """Start executing the query without waiting for it to finish. Return the execution id."""

    @abstractmethod
    def get_query_execution_status(self, execution_id: str) -> ExecutionStatusReport:
        """Return the current status of the execution with the given id."""

    @abstractmethod
    def get_query_results(self, execution_id: str) -> List[ResultRow]:
        """Return the result rows of the execution with the given id, which has SUCCEEDED.

        If the rows are sequences of cell values, the first row must be the header naming
        the result columns.
        """
