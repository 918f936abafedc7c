# Copyright 2024-present Kensho Technologies, LLC.
class OCGraphQLError(Exception):
    """Generic error when compiling schemas or tracking tasks."""


class SchemaParsingError(OCGraphQLError):
    """Exception raised when the provided GraphQL schema text could not be parsed."""


class SchemaValidationError(OCGraphQLError):
    """Exception raised when the provided GraphQL schema misuses the supported directives.

    For example:
    - the @task directive is applied to a Mutation field;
    - a @task Query field returns a type that is not marked @task_response;
    - a @resolver type has no field with a @sql_query directive.
    """


class ValidationError(OCGraphQLError):
    """Exception raised when an argument value cannot be safely represented in a query.

    Currently this is raised for non-finite numeric values (NaN and the infinities).
    """


class UnsupportedTypeError(OCGraphQLError):
    """Exception raised when an argument value is of a type that has no query representation."""


class CompileError(OCGraphQLError):
    """Exception raised when a query template cannot be compiled.

    This could be due to many reasons, such as:
    - the template references a join table that is not known to the schema;
    - the template does not start with a recognized SQL keyword;
    - a @return directive refers to something other than an argument or source value.
    """


class EngineError(OCGraphQLError):
    """Exception raised when the external query execution engine reports a failure."""


class NotFoundError(OCGraphQLError):
    """Exception raised when a task or task operation does not exist."""


class TaskConflictError(OCGraphQLError):
    """Exception raised when a task is triggered with an id that is already in use."""


class NotificationParsingError(OCGraphQLError):
    """Exception raised when a push notification does not have a recognized shape."""


class TaskStoreError(OCGraphQLError):
    """Exception raised when a task store fails to record a newly started task."""
