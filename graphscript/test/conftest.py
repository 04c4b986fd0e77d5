import copy
from typing import Any, Dict, List, Optional

import pytest

from graphscript.compiler.registry import (
    Category,
    Descriptor,
    DescriptorRegistry,
    Preview,
    TemplateDescriptor,
)


# --- Document builders ---

def make_node(node_id: str, node_type: str, **data) -> Dict[str, Any]:
    return {
        "id": node_id,
        "type": node_type,
        "data": data,
        "position": {"x": 0, "y": 0},
        "selected": False,
    }


def make_edge(source: str, target: str, handle: Optional[str] = None, edge_id: Optional[str] = None) -> Dict[str, Any]:
    spec = {"id": edge_id or f"{source}->{target}", "source": source, "target": target}
    if handle is not None:
        spec["targetHandle"] = handle
    return spec


def make_document(
    nodes: List[Dict[str, Any]],
    edges: List[Dict[str, Any]],
    pipeline_id: str = "primary",
    name: Optional[str] = "test-pipeline",
) -> Dict[str, Any]:
    pipeline = {
        "id": pipeline_id,
        "flow": {
            "nodes": copy.deepcopy(nodes),
            "edges": copy.deepcopy(edges),
            "viewport": {"x": 10, "y": 20, "zoom": 1.5},
        },
        "app_data": {"ui_data": {"comments": []}},
    }
    if name is not None:
        pipeline["name"] = name
    return {
        "doc_type": "pipeline",
        "version": "3.0",
        "id": "doc-1",
        "pipelines": [pipeline],
        "editor_metadata": {"theme": "dark"},
    }


class ConcatDescriptor(Descriptor):
    def emit(self, node, inputs, output):
        return f"{output} = concat_all([{', '.join(inputs.ordered)}])"


# --- Trivial descriptors: one line each, referencing the predecessor's output ---

def make_trivial_registry() -> DescriptorRegistry:
    registry = DescriptorRegistry()
    registry.register("Read", TemplateDescriptor(
        "{output} = read_source({data[path]!r})",
        imports=("import pandas as pd",),
        dependencies=("pandas",),
    ))
    registry.register("Filter", TemplateDescriptor(
        "{output} = {input}[{input}['amount'] > 0]",
        dependencies=("pandas",),
    ))
    registry.register("WriteSink", TemplateDescriptor(
        "{input}.to_csv('out.csv')",
        is_output=True,
        preview=Preview.NONE,
    ))
    registry.register("Join", TemplateDescriptor(
        "{output} = pd.merge({inputs[left]}, {inputs[right]}, on='id')",
        imports=("import pandas as pd",),
        dependencies=("pandas",),
    ))
    registry.register("Concat", ConcatDescriptor())
    registry.register("Docs", TemplateDescriptor(
        "{output} = load_docs()",
        preview=Preview.DOCUMENTS,
    ))
    registry.register("Environment", TemplateDescriptor(
        "os.environ['STAGE'] = {data[stage]!r}",
        category=Category.ENVIRONMENT,
        imports=("import os",),
    ))
    registry.register("Connection", TemplateDescriptor(
        "{output} = connect({data[url]!r})",
        category=Category.CONNECTION,
        dependencies=("sqlalchemy>=2.0",),
        preview=Preview.NONE,
    ))
    registry.register("Query", TemplateDescriptor(
        "{output} = run_query({connection}, {data[sql]!r})",
        dependencies=("sqlalchemy",),
    ))
    return registry


@pytest.fixture
def registry() -> DescriptorRegistry:
    return make_trivial_registry().freeze()


@pytest.fixture
def linear_document() -> Dict[str, Any]:
    """A(Read) -> B(Filter) -> C(WriteSink)"""
    return make_document(
        nodes=[
            make_node("A", "Read", path="orders.csv"),
            make_node("B", "Filter"),
            make_node("C", "WriteSink"),
        ],
        edges=[make_edge("A", "B"), make_edge("B", "C")],
    )
