"""
graphscript compiler — Built-in Node Descriptors
================================================
The standard step library: pandas-based inputs, transforms and outputs, plus
the environment and connection nodes that configure ambient state.

    Type                 Category     Emits
    ───────────────────  ───────────  ──────────────────────────────────────
    csvFileInput         standard     pd.read_csv
    jsonFileInput        standard     pd.read_json
    excelFileInput       standard     pd.read_excel
    sqlQueryInput        standard     pd.read_sql (needs a connection)
    textDocumentsInput   standard     list of {"page_content", "metadata"}
    filter               standard     DataFrame.query
    selectColumns        standard     column projection
    renameColumns        standard     DataFrame.rename
    sort                 standard     DataFrame.sort_values
    deduplicate          standard     DataFrame.drop_duplicates
    aggregate            standard     groupby().agg()
    join                 standard     pd.merge (handles: left, right)
    concat               standard     pd.concat over every input
    csvFileOutput        output       DataFrame.to_csv
    jsonFileOutput       output       DataFrame.to_json
    sqlTableOutput       output       DataFrame.to_sql (needs a connection)
    envVariables         environment  os.environ assignments
    envFile              environment  dotenv.load_dotenv
    postgresConnection   connection   SQLAlchemy engine
    sqliteConnection     connection   SQLAlchemy engine

All user values are embedded with repr(), so any JSON value from the editor
becomes a valid Python literal.
"""

from __future__ import annotations

import textwrap
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, Dict, Iterator, List

from .diagnostics import DescriptorError
from .registry import Category, Descriptor, DescriptorRegistry, InputRefs, Preview

if TYPE_CHECKING:
    from .ir import Node


# ── Code writer ───────────────────────────────────────────────────────────────

class CodeWriter:
    """Indented line buffer for building multi-line fragments."""

    INDENT = "    "

    def __init__(self, indent: int = 0):
        self._lines: List[str] = []
        self._depth = indent

    def writeln(self, line: str = "") -> "CodeWriter":
        self._lines.append(self.INDENT * self._depth + line if line else "")
        return self

    def blank(self) -> "CodeWriter":
        return self.writeln()

    def block(self, code: str) -> "CodeWriter":
        """Write a fragment line by line at the current depth."""
        for line in code.splitlines():
            self.writeln(line.rstrip())
        return self

    def push(self) -> "CodeWriter":
        self._depth += 1
        return self

    def pop(self) -> "CodeWriter":
        self._depth = max(0, self._depth - 1)
        return self

    @contextmanager
    def indented(self) -> Iterator["CodeWriter"]:
        self.push()
        try:
            yield self
        finally:
            self.pop()

    def lines(self) -> List[str]:
        return list(self._lines)

    def result(self) -> str:
        return "\n".join(self._lines)


# ── Helpers ───────────────────────────────────────────────────────────────────

_PANDAS_IMPORTS = ("import pandas as pd",)
_PANDAS_DEPS    = ("pandas",)
_SQL_DEPS       = ("pandas", "sqlalchemy>=2.0")


def _required(node: "Node", key: str) -> Any:
    value = node.data.get(key)
    if value is None or value == "" or value == []:
        raise DescriptorError(f"{node.type} node '{node.id}' needs a value for '{key}'")
    return value


def _as_list(value: Any) -> List[Any]:
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def _single_input(node: "Node", inputs: InputRefs) -> str:
    if inputs.primary is None:
        raise DescriptorError(f"{node.type} node '{node.id}' has no input connected")
    return inputs.primary


def _connection(node: "Node", inputs: InputRefs) -> str:
    if inputs.connection is None:
        raise DescriptorError(f"{node.type} node '{node.id}' needs a connection node attached")
    return inputs.connection


# ── Inputs ────────────────────────────────────────────────────────────────────

class CsvFileInputDescriptor(Descriptor):
    imports = _PANDAS_IMPORTS
    dependencies = _PANDAS_DEPS

    def emit(self, node, inputs, output):
        path = _required(node, "filePath")
        options = ""
        if node.data.get("separator") not in (None, "", ","):
            options += f", sep={node.data['separator']!r}"
        if node.data.get("encoding"):
            options += f", encoding={node.data['encoding']!r}"
        return f"{output} = pd.read_csv({path!r}{options})"


class JsonFileInputDescriptor(Descriptor):
    imports = _PANDAS_IMPORTS
    dependencies = _PANDAS_DEPS

    def emit(self, node, inputs, output):
        path = _required(node, "filePath")
        lines = bool(node.data.get("lines", False))
        return f"{output} = pd.read_json({path!r}, lines={lines!r})"


class ExcelFileInputDescriptor(Descriptor):
    imports = _PANDAS_IMPORTS
    dependencies = ("pandas", "openpyxl")

    def emit(self, node, inputs, output):
        path = _required(node, "filePath")
        sheet = node.data.get("sheetName", 0)
        return f"{output} = pd.read_excel({path!r}, sheet_name={sheet!r})"


class SqlQueryInputDescriptor(Descriptor):
    imports = _PANDAS_IMPORTS
    dependencies = _SQL_DEPS

    def emit(self, node, inputs, output):
        query = _required(node, "query")
        return f"{output} = pd.read_sql({query!r}, con={_connection(node, inputs)})"


_LOAD_TEXT_DOCUMENTS = textwrap.dedent('''\
    def _load_text_documents(pattern, encoding="utf-8"):
        """Read every file matching `pattern` into a document dict."""
        documents = []
        for path in sorted(glob.glob(pattern, recursive=True)):
            with open(path, encoding=encoding) as fh:
                documents.append({"page_content": fh.read(), "metadata": {"source": path}})
        return documents
    ''')


class TextDocumentsInputDescriptor(Descriptor):
    imports = ("import glob",)
    functions = {"_load_text_documents": _LOAD_TEXT_DOCUMENTS}
    preview = Preview.DOCUMENTS
    output_prefix = "documents"

    def emit(self, node, inputs, output):
        pattern = _required(node, "pattern")
        encoding = node.data.get("encoding", "utf-8")
        return f"{output} = _load_text_documents({pattern!r}, encoding={encoding!r})"


# ── Transforms ────────────────────────────────────────────────────────────────

class FilterDescriptor(Descriptor):
    dependencies = _PANDAS_DEPS

    def emit(self, node, inputs, output):
        condition = _required(node, "condition")
        return f"{output} = {_single_input(node, inputs)}.query({condition!r}).reset_index(drop=True)"


class SelectColumnsDescriptor(Descriptor):
    dependencies = _PANDAS_DEPS

    def emit(self, node, inputs, output):
        columns = _as_list(_required(node, "columns"))
        return f"{output} = {_single_input(node, inputs)}[{columns!r}]"


class RenameColumnsDescriptor(Descriptor):
    dependencies = _PANDAS_DEPS

    def emit(self, node, inputs, output):
        mapping = _required(node, "mapping")
        if not isinstance(mapping, dict):
            raise DescriptorError(f"renameColumns node '{node.id}': 'mapping' must be an object")
        return f"{output} = {_single_input(node, inputs)}.rename(columns={dict(mapping)!r})"


class SortDescriptor(Descriptor):
    dependencies = _PANDAS_DEPS

    def emit(self, node, inputs, output):
        columns = _as_list(_required(node, "by"))
        ascending = node.data.get("ascending", True)
        return (
            f"{output} = {_single_input(node, inputs)}"
            f".sort_values(by={columns!r}, ascending={ascending!r}).reset_index(drop=True)"
        )


class DeduplicateDescriptor(Descriptor):
    dependencies = _PANDAS_DEPS

    def emit(self, node, inputs, output):
        subset = node.data.get("columns")
        args = f"subset={_as_list(subset)!r}" if subset else ""
        return f"{output} = {_single_input(node, inputs)}.drop_duplicates({args}).reset_index(drop=True)"


class AggregateDescriptor(Descriptor):
    dependencies = _PANDAS_DEPS

    def emit(self, node, inputs, output):
        group_by = _as_list(_required(node, "groupBy"))
        aggregations = _required(node, "aggregations")
        if not isinstance(aggregations, dict):
            raise DescriptorError(f"aggregate node '{node.id}': 'aggregations' must be an object")
        return (
            f"{output} = {_single_input(node, inputs)}"
            f".groupby({group_by!r}, as_index=False).agg({dict(aggregations)!r})"
        )


class JoinDescriptor(Descriptor):
    imports = _PANDAS_IMPORTS
    dependencies = _PANDAS_DEPS

    def emit(self, node, inputs, output):
        if len(inputs) < 2:
            raise DescriptorError(f"join node '{node.id}' needs a left and a right input")
        left = inputs.get("left")
        right = inputs.get("right")
        # Unlabelled edges fill the missing side in document order.
        rest = list(inputs.ordered)
        for ref in (left, right):
            if ref is not None:
                rest.remove(ref)
        left = left or rest.pop(0)
        right = right or rest.pop(0)

        how = node.data.get("how", "inner")
        w = CodeWriter()
        w.writeln(f"{output} = pd.merge(")
        w.push()
        w.writeln(f"{left},")
        w.writeln(f"{right},")
        w.writeln(f"how={how!r},")
        if node.data.get("on"):
            w.writeln(f"on={_as_list(node.data['on'])!r},")
        else:
            w.writeln(f"left_on={_as_list(_required(node, 'leftOn'))!r},")
            w.writeln(f"right_on={_as_list(_required(node, 'rightOn'))!r},")
        w.pop()
        w.writeln(")")
        return w.result()


class ConcatDescriptor(Descriptor):
    imports = _PANDAS_IMPORTS
    dependencies = _PANDAS_DEPS

    def emit(self, node, inputs, output):
        if not inputs.ordered:
            raise DescriptorError(f"concat node '{node.id}' has no input connected")
        frames = ", ".join(inputs.ordered)
        return f"{output} = pd.concat([{frames}], ignore_index=True)"


# ── Outputs ───────────────────────────────────────────────────────────────────

class _OutputDescriptor(Descriptor):
    is_output = True
    produces_output = False
    preview = Preview.NONE
    dependencies = _PANDAS_DEPS


class CsvFileOutputDescriptor(_OutputDescriptor):
    def emit(self, node, inputs, output):
        path = _required(node, "filePath")
        return f"{_single_input(node, inputs)}.to_csv({path!r}, index=False)"


class JsonFileOutputDescriptor(_OutputDescriptor):
    def emit(self, node, inputs, output):
        path = _required(node, "filePath")
        orient = node.data.get("orient", "records")
        return f"{_single_input(node, inputs)}.to_json({path!r}, orient={orient!r})"


class SqlTableOutputDescriptor(_OutputDescriptor):
    dependencies = _SQL_DEPS

    def emit(self, node, inputs, output):
        table = _required(node, "table")
        if_exists = node.data.get("ifExists", "append")
        return (
            f"{_single_input(node, inputs)}.to_sql("
            f"{table!r}, con={_connection(node, inputs)}, if_exists={if_exists!r}, index=False)"
        )


# ── Environment (deferred) ────────────────────────────────────────────────────

class EnvVariablesDescriptor(Descriptor):
    category = Category.ENVIRONMENT
    imports = ("import os",)
    produces_output = False
    preview = Preview.NONE

    def emit(self, node, inputs, output):
        variables = _required(node, "variables")
        if isinstance(variables, dict):
            pairs = list(variables.items())
        else:
            pairs = [(v["name"], v.get("value", "")) for v in variables]
        return "\n".join(f"os.environ[{str(k)!r}] = {str(v)!r}" for k, v in pairs)


class EnvFileDescriptor(Descriptor):
    category = Category.ENVIRONMENT
    imports = ("from dotenv import load_dotenv",)
    dependencies = ("python-dotenv",)
    produces_output = False
    preview = Preview.NONE

    def emit(self, node, inputs, output):
        path = node.data.get("filePath", ".env")
        override = bool(node.data.get("override", False))
        return f"load_dotenv({path!r}, override={override!r})"


# ── Connections (deferred) ────────────────────────────────────────────────────

class _ConnectionDescriptor(Descriptor):
    category = Category.CONNECTION
    imports = ("import sqlalchemy",)
    dependencies = ("sqlalchemy>=2.0",)
    preview = Preview.NONE


class PostgresConnectionDescriptor(_ConnectionDescriptor):
    imports = ("import os", "import sqlalchemy")
    dependencies = ("sqlalchemy>=2.0", "psycopg2-binary")
    output_prefix = "postgres_engine"

    def emit(self, node, inputs, output):
        password_env = node.data.get("passwordEnv", "POSTGRES_PASSWORD")
        w = CodeWriter()
        w.writeln(f"{output} = sqlalchemy.create_engine(")
        w.push().writeln("sqlalchemy.engine.URL.create(")
        w.push()
        w.writeln('"postgresql+psycopg2",')
        w.writeln(f"username={_required(node, 'user')!r},")
        w.writeln(f"password=os.environ.get({password_env!r}),")
        w.writeln(f"host={node.data.get('host', 'localhost')!r},")
        w.writeln(f"port={int(node.data.get('port', 5432))!r},")
        w.writeln(f"database={_required(node, 'database')!r},")
        w.pop().writeln(")")
        w.pop().writeln(")")
        return w.result()


class SqliteConnectionDescriptor(_ConnectionDescriptor):
    output_prefix = "sqlite_engine"

    def emit(self, node, inputs, output):
        path = _required(node, "databasePath")
        return f"{output} = sqlalchemy.create_engine({('sqlite:///' + path)!r})"


# ── Registry ──────────────────────────────────────────────────────────────────

BUILTIN_DESCRIPTORS: Dict[str, Descriptor] = {
    "csvFileInput":        CsvFileInputDescriptor(),
    "jsonFileInput":       JsonFileInputDescriptor(),
    "excelFileInput":      ExcelFileInputDescriptor(),
    "sqlQueryInput":       SqlQueryInputDescriptor(),
    "textDocumentsInput":  TextDocumentsInputDescriptor(),
    "filter":              FilterDescriptor(),
    "selectColumns":       SelectColumnsDescriptor(),
    "renameColumns":       RenameColumnsDescriptor(),
    "sort":                SortDescriptor(),
    "deduplicate":         DeduplicateDescriptor(),
    "aggregate":           AggregateDescriptor(),
    "join":                JoinDescriptor(),
    "concat":              ConcatDescriptor(),
    "csvFileOutput":       CsvFileOutputDescriptor(),
    "jsonFileOutput":      JsonFileOutputDescriptor(),
    "sqlTableOutput":      SqlTableOutputDescriptor(),
    "envVariables":        EnvVariablesDescriptor(),
    "envFile":             EnvFileDescriptor(),
    "postgresConnection":  PostgresConnectionDescriptor(),
    "sqliteConnection":    SqliteConnectionDescriptor(),
}


def register_builtins(registry: DescriptorRegistry) -> DescriptorRegistry:
    registry.update(BUILTIN_DESCRIPTORS)
    return registry


__all__ = ["BUILTIN_DESCRIPTORS", "CodeWriter", "register_builtins"]
