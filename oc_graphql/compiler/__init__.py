# Copyright 2024-present Kensho Technologies, LLC.
from .common import CompilationResult, QueryClassification, classify_query  # noqa
from .join_tables import JoinTableRegistry, find_join_table_names  # noqa
from .representations import represent_argument_as_sql  # noqa
from .return_values import (  # noqa
    ResultShape,
    get_declared_result_shape,
    infer_result_shape,
    resolve_return_values,
)
from .template_compiler import TemplateCompiler, compile_template  # noqa
