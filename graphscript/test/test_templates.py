import ast

import pytest

from graphscript.compiler.diagnostics import DescriptorError
from graphscript.compiler.ir import Node
from graphscript.compiler.registry import Category, DescriptorRegistry, Emission, InputRefs, Preview
from graphscript.compiler.templates import (
    BUILTIN_DESCRIPTORS,
    CodeWriter,
    register_builtins,
)


def emit(type_name, data=None, inputs=None, output="out_1", node_id="n1"):
    descriptor = BUILTIN_DESCRIPTORS[type_name]
    node = Node(id=node_id, type=type_name, data=data or {})
    result = descriptor.emit(node, inputs or InputRefs(), output)
    code = result.code if isinstance(result, Emission) else result
    ast.parse(code)
    return code


def single(ref="df_1"):
    return InputRefs(ordered=(ref,))


class TestCodeWriter:

    def test_indentation(self):
        w = CodeWriter()
        w.writeln("if x:")
        with w.indented():
            w.writeln("y = 1").blank().writeln("# done")
        w.writeln("z = 2")
        assert w.result() == "if x:\n    y = 1\n\n    # done\nz = 2"

    def test_pop_never_goes_negative(self):
        w = CodeWriter()
        w.pop().pop().writeln("x = 1")
        assert w.lines() == ["x = 1"]

    def test_block_keeps_relative_indentation(self):
        w = CodeWriter(indent=1)
        w.block("for a in b:\n    print(a)  \n\nc = 2")
        assert w.lines() == ["    for a in b:", "        print(a)", "", "    c = 2"]


class TestInputs:

    def test_csv(self):
        assert emit("csvFileInput", {"filePath": "orders.csv"}) == "out_1 = pd.read_csv('orders.csv')"

    def test_csv_options(self):
        code = emit("csvFileInput", {"filePath": "o.csv", "separator": ";", "encoding": "latin-1"})
        assert code == "out_1 = pd.read_csv('o.csv', sep=';', encoding='latin-1')"

    def test_csv_needs_path(self):
        with pytest.raises(DescriptorError, match="filePath"):
            emit("csvFileInput", {})

    def test_json_lines(self):
        assert emit("jsonFileInput", {"filePath": "e.jsonl", "lines": True}) == (
            "out_1 = pd.read_json('e.jsonl', lines=True)"
        )

    def test_excel(self):
        assert emit("excelFileInput", {"filePath": "b.xlsx", "sheetName": "Q1"}) == (
            "out_1 = pd.read_excel('b.xlsx', sheet_name='Q1')"
        )
        assert "openpyxl" in BUILTIN_DESCRIPTORS["excelFileInput"].dependencies

    def test_sql_query_uses_connection(self):
        inputs = InputRefs(connections={"db": "sqlite_engine_1"})
        assert emit("sqlQueryInput", {"query": "select 1"}, inputs) == (
            "out_1 = pd.read_sql('select 1', con=sqlite_engine_1)"
        )

    def test_sql_query_without_connection(self):
        with pytest.raises(DescriptorError, match="connection"):
            emit("sqlQueryInput", {"query": "select 1"})

    def test_text_documents(self):
        descriptor = BUILTIN_DESCRIPTORS["textDocumentsInput"]
        assert descriptor.preview is Preview.DOCUMENTS
        assert descriptor.output_prefix == "documents"
        assert "_load_text_documents" in descriptor.functions
        ast.parse(descriptor.functions["_load_text_documents"])
        assert emit("textDocumentsInput", {"pattern": "docs/*.md"}) == (
            "out_1 = _load_text_documents('docs/*.md', encoding='utf-8')"
        )

    def test_values_are_escaped(self):
        code = emit("csvFileInput", {"filePath": "it's \"quoted\"\n.csv"})
        assert ast.literal_eval(code.split("(", 1)[1].rstrip(")")) == "it's \"quoted\"\n.csv"


class TestTransforms:

    def test_filter(self):
        assert emit("filter", {"condition": "amount > 0"}, single()) == (
            "out_1 = df_1.query('amount > 0').reset_index(drop=True)"
        )

    def test_filter_without_input(self):
        with pytest.raises(DescriptorError, match="no input"):
            emit("filter", {"condition": "amount > 0"})

    def test_select_columns_accepts_single_value(self):
        assert emit("selectColumns", {"columns": "id"}, single()) == "out_1 = df_1[['id']]"

    def test_rename(self):
        assert emit("renameColumns", {"mapping": {"a": "b"}}, single()) == (
            "out_1 = df_1.rename(columns={'a': 'b'})"
        )

    def test_rename_needs_mapping_object(self):
        with pytest.raises(DescriptorError, match="mapping"):
            emit("renameColumns", {"mapping": ["a"]}, single())

    def test_sort(self):
        assert emit("sort", {"by": ["a", "b"], "ascending": False}, single()) == (
            "out_1 = df_1.sort_values(by=['a', 'b'], ascending=False).reset_index(drop=True)"
        )

    def test_deduplicate(self):
        assert emit("deduplicate", {}, single()) == "out_1 = df_1.drop_duplicates().reset_index(drop=True)"
        assert emit("deduplicate", {"columns": "id"}, single()) == (
            "out_1 = df_1.drop_duplicates(subset=['id']).reset_index(drop=True)"
        )

    def test_aggregate(self):
        code = emit("aggregate", {"groupBy": "region", "aggregations": {"amount": "sum"}}, single())
        assert code == "out_1 = df_1.groupby(['region'], as_index=False).agg({'amount': 'sum'})"

    def test_join_by_handle(self):
        inputs = InputRefs(ordered=("b_1", "a_1"), by_handle={"right": "b_1", "left": "a_1"})
        assert emit("join", {"on": "id", "how": "left"}, inputs) == (
            "out_1 = pd.merge(\n"
            "    a_1,\n"
            "    b_1,\n"
            "    how='left',\n"
            "    on=['id'],\n"
            ")"
        )

    def test_join_unlabelled_inputs_fill_in_order(self):
        inputs = InputRefs(ordered=("a_1", "b_1"), by_handle={"right": "a_1"})
        code = emit("join", {"leftOn": "x", "rightOn": "y"}, inputs)
        assert code.splitlines()[1:3] == ["    b_1,", "    a_1,"]
        assert "left_on=['x']," in code

    def test_join_needs_two_inputs(self):
        with pytest.raises(DescriptorError, match="left and a right"):
            emit("join", {"on": "id"}, single())

    def test_concat(self):
        inputs = InputRefs(ordered=("a_1", "b_1", "c_1"))
        assert emit("concat", {}, inputs) == "out_1 = pd.concat([a_1, b_1, c_1], ignore_index=True)"


class TestOutputs:

    @pytest.mark.parametrize("type_name", ["csvFileOutput", "jsonFileOutput", "sqlTableOutput"])
    def test_output_flags(self, type_name):
        descriptor = BUILTIN_DESCRIPTORS[type_name]
        assert descriptor.is_output
        assert not descriptor.produces_output
        assert descriptor.preview is Preview.NONE

    def test_csv_output(self):
        assert emit("csvFileOutput", {"filePath": "o.csv"}, single(), output=None) == (
            "df_1.to_csv('o.csv', index=False)"
        )

    def test_json_output(self):
        assert emit("jsonFileOutput", {"filePath": "o.json"}, single(), output=None) == (
            "df_1.to_json('o.json', orient='records')"
        )

    def test_sql_output(self):
        inputs = InputRefs(ordered=("df_1",), connections={"db": "engine_1"})
        assert emit("sqlTableOutput", {"table": "orders"}, inputs, output=None) == (
            "df_1.to_sql('orders', con=engine_1, if_exists='append', index=False)"
        )


class TestDeferredDescriptors:

    def test_env_variables_mapping(self):
        code = emit("envVariables", {"variables": {"STAGE": "dev", "RETRIES": 3}}, output=None)
        assert code == "os.environ['STAGE'] = 'dev'\nos.environ['RETRIES'] = '3'"

    def test_env_variables_list(self):
        code = emit("envVariables", {"variables": [{"name": "A", "value": "1"}, {"name": "B"}]}, output=None)
        assert code == "os.environ['A'] = '1'\nos.environ['B'] = ''"

    def test_env_file(self):
        assert emit("envFile", {}, output=None) == "load_dotenv('.env', override=False)"
        assert "python-dotenv" in BUILTIN_DESCRIPTORS["envFile"].dependencies

    def test_postgres(self):
        code = emit("postgresConnection", {"user": "etl", "database": "shop", "port": "6543"})
        assert code.startswith("out_1 = sqlalchemy.create_engine(\n")
        assert "        username='etl',\n" in code
        assert "        port=6543,\n" in code
        assert "password=os.environ.get('POSTGRES_PASSWORD')" in code

    def test_sqlite(self):
        assert emit("sqliteConnection", {"databasePath": "shop.db"}) == (
            "out_1 = sqlalchemy.create_engine('sqlite:///shop.db')"
        )

    @pytest.mark.parametrize("type_name,category", [
        ("envVariables", Category.ENVIRONMENT),
        ("envFile", Category.ENVIRONMENT),
        ("postgresConnection", Category.CONNECTION),
        ("sqliteConnection", Category.CONNECTION),
        ("csvFileInput", Category.STANDARD),
    ])
    def test_categories(self, type_name, category):
        assert BUILTIN_DESCRIPTORS[type_name].category is category


def test_register_builtins():
    registry = register_builtins(DescriptorRegistry())
    assert set(registry.types()) == set(BUILTIN_DESCRIPTORS)
