"""
graphscript compiler — Descriptor Registry
==========================================
A Descriptor is the per-node-type behaviour bundle the assembler calls to turn
one node into code.  It supplies:

  imports        top-level import lines the fragment needs
  dependencies   distribution names (optionally with a version specifier)
                 the generated script needs installed
  functions      helper function sources, keyed by function name
  category       STANDARD, or ENVIRONMENT / CONNECTION for deferred nodes
  emit(node, inputs, output)
                 returns the code fragment for the node

Adding a new node type
----------------------
1. Subclass Descriptor (or use TemplateDescriptor for one-line templates).
2. Override emit().
3. Register it:

       @registry.register_type("myNodeType")
       class MyNodeDescriptor(Descriptor):
           ...

   or, from an installed plugin, expose a callable under the
   ``graphscript.descriptors`` entry-point group that receives the registry.

The registry is filled once at startup and frozen; compile calls only read it,
so concurrent compiles need no locking.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from functools import lru_cache
from importlib.metadata import entry_points
from types import MappingProxyType
from typing import (
    TYPE_CHECKING,
    Callable,
    Dict,
    Iterator,
    List,
    Mapping,
    Optional,
    Tuple,
    Type,
    Union,
)

from .diagnostics import RegistryFrozen, UnknownNodeType

if TYPE_CHECKING:
    from .ir import Node


logger = logging.getLogger(__name__)

ENTRY_POINT_GROUP = "graphscript.descriptors"


class Category(str, Enum):
    STANDARD    = "standard"
    ENVIRONMENT = "environment"
    CONNECTION  = "connection"

    @property
    def is_deferred(self) -> bool:
        return self is not Category.STANDARD


class Preview(str, Enum):
    """Which host display hook shows a node's output in a partial compile."""
    NONE      = "none"
    TABLE     = "table"
    DOCUMENTS = "documents"


# ── Emit contract ─────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class InputRefs:
    """
    Variable names bound to a node's inputs.

    ordered      refs of standard predecessors, in edge document order
    by_handle    targetHandle → ref, for multi-input nodes
    connections  deferred predecessor node id → ref, for nodes fed by a
                 Connection node that exposes a value (e.g. an engine)
    """
    ordered: Tuple[str, ...] = ()
    by_handle: Mapping[str, str] = field(default_factory=dict)
    connections: Mapping[str, str] = field(default_factory=dict)

    @property
    def primary(self) -> Optional[str]:
        return self.ordered[0] if self.ordered else None

    @property
    def connection(self) -> Optional[str]:
        return next(iter(self.connections.values()), None)

    def get(self, handle: str, default: Optional[str] = None) -> Optional[str]:
        return self.by_handle.get(handle, default)

    def __getitem__(self, handle: str) -> str:
        return self.by_handle[handle]

    def __len__(self) -> int:
        return len(self.ordered)


@dataclass(frozen=True)
class Emission:
    code: str
    # None → the name the assembler passed in as `output` (if any).
    output_ref: Optional[str] = None


# ── Base descriptor ───────────────────────────────────────────────────────────

class Descriptor:
    category: Category               = Category.STANDARD
    imports: Tuple[str, ...]         = ()
    dependencies: Tuple[str, ...]    = ()
    functions: Mapping[str, str]     = MappingProxyType({})

    # Output steps get wrapped in the failure-reporting form.
    is_output: bool                  = False
    # False for nodes that only configure ambient state or write somewhere.
    produces_output: bool            = True
    preview: Preview                 = Preview.TABLE
    # Base for synthesized variable names; defaults to snake_case(node.type).
    output_prefix: Optional[str]     = None

    def preferred_name(self, node: "Node") -> Optional[str]:
        """Explicit variable name for this node's output, if the descriptor wants one."""
        return None

    def emit(self, node: "Node", inputs: InputRefs, output: Optional[str]) -> Union[Emission, str]:
        raise NotImplementedError(f"{type(self).__name__}.emit()")

    def __repr__(self) -> str:
        return f"<{type(self).__name__} category={self.category.value}>"


class TemplateDescriptor(Descriptor):
    """
    Descriptor driven by a ``str.format`` template.

    Available fields: ``output``, ``input`` (primary input ref), ``inputs``
    (indexable by handle, e.g. ``{inputs[left]}``), ``connection``,
    ``data`` and ``node_id``.

        TemplateDescriptor("{output} = {input}.dropna()", dependencies=("pandas",))
    """

    def __init__(
        self,
        template: str,
        *,
        category: Category = Category.STANDARD,
        imports: Tuple[str, ...] = (),
        dependencies: Tuple[str, ...] = (),
        functions: Optional[Mapping[str, str]] = None,
        is_output: bool = False,
        produces_output: Optional[bool] = None,
        preview: Preview = Preview.TABLE,
        output_prefix: Optional[str] = None,
    ):
        self.template = template
        self.category = category
        self.imports = tuple(imports)
        self.dependencies = tuple(dependencies)
        self.functions = MappingProxyType(dict(functions or {}))
        self.is_output = is_output
        if produces_output is None:
            produces_output = "{output}" in template
        self.produces_output = produces_output
        self.preview = preview
        self.output_prefix = output_prefix

    def emit(self, node: "Node", inputs: InputRefs, output: Optional[str]) -> Emission:
        code = self.template.format(
            output=output,
            input=inputs.primary,
            inputs=inputs,
            connection=inputs.connection,
            data=node.data,
            node_id=node.id,
        )
        return Emission(code=code)


# ── Registry ──────────────────────────────────────────────────────────────────

class DescriptorRegistry:
    def __init__(self, descriptors: Optional[Mapping[str, Descriptor]] = None):
        self._descriptors: Dict[str, Descriptor] = {}
        self._frozen = False
        for type_name, descriptor in (descriptors or {}).items():
            self.register(type_name, descriptor)

    # ── Population (startup only) ─────────────────────────────────────────

    def register(self, type_name: str, descriptor: Descriptor) -> Descriptor:
        if self._frozen:
            raise RegistryFrozen(
                f"cannot register '{type_name}': registry is frozen after startup"
            )
        if not isinstance(descriptor, Descriptor):
            raise TypeError(
                f"descriptor for '{type_name}' must be a Descriptor, got {type(descriptor).__name__}"
            )
        previous = self._descriptors.pop(type_name, None)
        if previous is not None:
            logger.debug("replacing descriptor for '%s': %r -> %r", type_name, previous, descriptor)
        # Re-inserting keeps types() in latest-registration order.
        self._descriptors[type_name] = descriptor
        return descriptor

    def register_type(self, type_name: str) -> Callable[[Type[Descriptor]], Type[Descriptor]]:
        """Class decorator: instantiate a Descriptor subclass and register it."""
        def decorator(descriptor_cls: Type[Descriptor]) -> Type[Descriptor]:
            self.register(type_name, descriptor_cls())
            return descriptor_cls
        return decorator

    def update(self, descriptors: Mapping[str, Descriptor]) -> None:
        for type_name, descriptor in descriptors.items():
            self.register(type_name, descriptor)

    def load_entry_points(self, group: str = ENTRY_POINT_GROUP) -> List[str]:
        """
        Load plugin descriptor sets from installed distributions.

        Each entry point must resolve to either a callable taking this
        registry, or a mapping of type name → Descriptor.  A plugin that fails
        to load is logged and skipped.

        Returns:
            Names of the entry points that loaded successfully.
        """
        loaded: List[str] = []
        for ep in sorted(entry_points(group=group), key=lambda e: e.name):
            try:
                plugin = ep.load()
                if isinstance(plugin, Mapping):
                    self.update(plugin)
                else:
                    plugin(self)
            except RegistryFrozen:
                raise
            except Exception:
                logger.warning("failed to load descriptor plugin '%s'", ep.name, exc_info=True)
                continue
            loaded.append(ep.name)
            logger.info("loaded descriptor plugin '%s'", ep.name)
        return loaded

    def freeze(self) -> "DescriptorRegistry":
        self._frozen = True
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    # ── Lookup (compile time) ─────────────────────────────────────────────

    def resolve(self, type_name: str, node_id: Optional[str] = None) -> Descriptor:
        try:
            return self._descriptors[type_name]
        except KeyError:
            raise UnknownNodeType(type_name, node_id) from None

    def get(self, type_name: str) -> Optional[Descriptor]:
        return self._descriptors.get(type_name)

    def types(self) -> List[str]:
        return list(self._descriptors)

    def __contains__(self, type_name: object) -> bool:
        return type_name in self._descriptors

    def __iter__(self) -> Iterator[str]:
        return iter(self._descriptors)

    def __len__(self) -> int:
        return len(self._descriptors)


def build_registry(load_plugins: bool = True) -> DescriptorRegistry:
    """Build and freeze a registry holding the built-in descriptors (+ plugins)."""
    from .templates import register_builtins

    registry = DescriptorRegistry()
    register_builtins(registry)
    if load_plugins:
        registry.load_entry_points()
    logger.debug("descriptor registry ready: %d type(s)", len(registry))
    return registry.freeze()


@lru_cache(maxsize=None)
def default_registry(load_plugins: bool = True) -> DescriptorRegistry:
    """Process-wide registry, built once on first use."""
    return build_registry(load_plugins=load_plugins)


__all__ = [
    "Category",
    "Descriptor",
    "DescriptorRegistry",
    "ENTRY_POINT_GROUP",
    "Emission",
    "InputRefs",
    "Preview",
    "TemplateDescriptor",
    "build_registry",
    "default_registry",
]
