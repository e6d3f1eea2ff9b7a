from __future__ import annotations

import logging
import re
from collections import defaultdict
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Literal

import numpy as np

from fractal_graph.app.models.graph import (
    ROOT_END_ID,
    ROOT_START_ID,
    BindingSlot,
    Edge,
    FractalGraph,
    InputHandle,
    PipelineNode,
)
from fractal_graph.app.models.node_definition import EmissionContext, NodeDefinition
from fractal_graph.app.models.session import ParamSlot, ShaderArtifact
from fractal_graph.app.services.bindings import MODULAR_PARAMS_UNIFORM, BoundParam, render_reference, resolve
from fractal_graph.app.services.compile_errors import CompilationError
from fractal_graph.app.services.linearizer import linearize, pipeline_to_graph
from fractal_graph.app.services.node_registry import NodeRegistry

logger = logging.getLogger(__name__)

ParamMode = Literal["uniform", "literal"]

DEFAULT_MAX_MODULAR_PARAMS = 64
START_VAR = "v_start"
BODY_INDENT = "    "
FORMULA_SIGNATURE = (
    "void formula_Modular(inout vec4 z, inout float dr, inout float trap, "
    "inout float distOverride, vec4 c, int i)"
)
EMPTY_FORMULA_BODY = [
    "z.xyz += c.xyz;",
    "float r = length(z.xyz);",
    "trap = min(trap, r);",
]


@dataclass(slots=True)
class CompiledNode:
    node: PipelineNode
    definition: NodeDefinition


@dataclass(slots=True)
class NodeInputs:
    in_a: str
    in_b: str


class CompilerService:
    def __init__(
        self,
        registry: NodeRegistry,
        max_modular_params: int = DEFAULT_MAX_MODULAR_PARAMS,
        param_mode: ParamMode = "uniform",
    ) -> None:
        self._registry = registry
        self._max_modular_params = max_modular_params
        self._param_mode = param_mode

    @property
    def max_modular_params(self) -> int:
        return self._max_modular_params

    @property
    def inlines_params(self) -> bool:
        """True when parameter values are written into the source as float literals."""
        return self._param_mode == "literal"

    def compile_graph(self, graph: FractalGraph) -> ShaderArtifact:
        pipeline = linearize(graph.nodes, graph.edges)
        return self.emit(pipeline, graph.edges)

    def emit(self, pipeline: Sequence[PipelineNode], edges: Iterable[Edge] | None = None) -> ShaderArtifact:
        """Render a canonical pipeline as the body of ``formula_Modular``.

        ``edges`` wires node inputs; without it the pipeline is treated as the
        persisted linear chain root-start -> p0 -> ... -> pn -> root-end.
        """
        compiled_nodes = self._resolve_definitions(pipeline)
        if not compiled_nodes:
            return ShaderArtifact(
                source=self._wrap_formula(EMPTY_FORMULA_BODY),
                uniforms=self.uniform_names(),
                uniform_block=self.uniform_declarations(),
            )

        explicit_edges = edges is not None
        edge_list = list(edges) if edges is not None else pipeline_to_graph(pipeline).edges
        inbound_index = self._build_inbound_index(edge_list, {item.node.id for item in compiled_nodes})

        errors = self._validate_inbound(compiled_nodes, inbound_index)
        if errors:
            raise CompilationError(errors)

        slots = {} if self.inlines_params else self._allocate_param_slots(compiled_nodes)

        var_map: dict[str, str] = {ROOT_START_ID: START_VAR}
        last_var = START_VAR
        body: list[str] = [
            "// --- Graph Init ---",
            f"vec3 {START_VAR}_p = z.xyz;",
            f"float {START_VAR}_d = 1000.0;",
            f"float {START_VAR}_dr = dr;",
            "",
        ]

        for ordinal, compiled in enumerate(compiled_nodes, start=1):
            node = compiled.node
            inputs = self._resolve_inputs(compiled, inbound_index, var_map)

            if not node.enabled:
                var_map[node.id] = inputs.in_a
                last_var = inputs.in_a
                continue

            out_var = self._allocate_var_name(ordinal, node.id)
            var_map[node.id] = out_var
            last_var = out_var

            body.extend(
                [
                    f"// Node: {node.type} ({node.id})",
                    f"vec3 {out_var}_p = {inputs.in_a}_p;",
                    f"float {out_var}_d = {inputs.in_a}_d;",
                    f"float {out_var}_dr = {inputs.in_a}_dr;",
                ]
            )

            fragment = self._render_fragment(compiled, out_var, inputs, slots)
            condition = node.condition
            if condition is not None and condition.active:
                modulus = condition.modulus
                body.append(f"if ( (i - (i/{modulus})*{modulus}) == {condition.remainder} ) {{")
                body.extend(self._indent(fragment, BODY_INDENT))
                body.append("}")
            else:
                body.extend(self._indent(fragment, ""))
            body.append("")

        diagnostics: list[str] = []
        final_var = self._resolve_final_var(inbound_index, var_map)
        if final_var is None:
            if explicit_edges:
                diagnostics.append(
                    f"No node is wired to '{ROOT_END_ID}'; using the last pipeline node as the formula output."
                )
            final_var = last_var

        body.extend(
            [
                f"z.xyz = {final_var}_p;",
                f"dr = {final_var}_dr;",
                "",
                f"float final_d = {final_var}_d;",
                "if (final_d < 999.0 && final_d > -1.0) {",
                f"{BODY_INDENT}distOverride = final_d;",
                "}",
                "",
                "trap = min(trap, length(z.xyz));",
            ]
        )

        logger.debug(
            "Emitted modular formula with %d nodes and %d parameter slots",
            len(compiled_nodes),
            len(slots),
        )
        return ShaderArtifact(
            source=self._wrap_formula(body),
            uniforms=self.uniform_names(),
            uniform_block=self.uniform_declarations(),
            param_slots=[
                ParamSlot(node_id=node_id, input_id=input_id, index=index)
                for (node_id, input_id), index in slots.items()
            ],
            diagnostics=diagnostics,
        )

    def pack_uniforms(self, pipeline: Sequence[PipelineNode]) -> np.ndarray:
        """Fill the modular parameter array in the slot order ``emit`` assigns.

        Literal sources declare no modular array, so the result is empty there.
        """
        if self.inlines_params:
            return np.zeros(0, dtype=np.float32)
        values = np.zeros(self._max_modular_params, dtype=np.float32)
        compiled_nodes = [
            CompiledNode(node=node, definition=definition)
            for node in pipeline
            if (definition := self._registry.get(node.type)) is not None
        ]
        for (node_id, input_id), index in self._allocate_param_slots(compiled_nodes).items():
            compiled = next(item for item in compiled_nodes if item.node.id == node_id)
            reference = resolve(compiled.node, input_id, compiled.definition)
            if isinstance(reference, BoundParam):
                continue
            values[index] = reference.value
        return values

    def uniform_names(self) -> list[str]:
        names = [slot.uniform_name for slot in BindingSlot]
        if not self.inlines_params:
            names.append(MODULAR_PARAMS_UNIFORM)
        return names

    def uniform_declarations(self) -> str:
        """GLSL uniform block the renderer prepends to the formula and keeps populated."""
        lines = [f"uniform float {slot.uniform_name};" for slot in BindingSlot]
        if not self.inlines_params:
            lines.append(f"uniform float {MODULAR_PARAMS_UNIFORM}[{self._max_modular_params}];")
        return "\n".join(lines)

    def _resolve_definitions(self, pipeline: Sequence[PipelineNode]) -> list[CompiledNode]:
        diagnostics: list[str] = []
        compiled_nodes: list[CompiledNode] = []
        for node in pipeline:
            definition = self._registry.get(node.type)
            if not definition:
                diagnostics.append(f"Node '{node.id}' references unknown node type '{node.type}'.")
                continue
            compiled_nodes.append(CompiledNode(node=node, definition=definition))

        if diagnostics:
            raise CompilationError(diagnostics)
        return compiled_nodes

    @staticmethod
    def _build_inbound_index(
        edges: Iterable[Edge],
        node_ids: set[str],
    ) -> dict[tuple[str, InputHandle], list[Edge]]:
        sources = node_ids | {ROOT_START_ID}
        targets = node_ids | {ROOT_END_ID}
        inbound: dict[tuple[str, InputHandle], list[Edge]] = defaultdict(list)
        for edge in edges:
            if edge.source not in sources or edge.target not in targets:
                continue
            inbound[(edge.target, edge.target_handle or InputHandle.A)].append(edge)
        return dict(inbound)

    @staticmethod
    def _validate_inbound(
        compiled_nodes: list[CompiledNode],
        inbound_index: dict[tuple[str, InputHandle], list[Edge]],
    ) -> list[str]:
        errors: list[str] = []
        targets = [(item.node.id, item.definition.is_combiner) for item in compiled_nodes]
        targets.append((ROOT_END_ID, False))
        for node_id, is_combiner in targets:
            handles = (InputHandle.A, InputHandle.B) if is_combiner else (InputHandle.A,)
            for handle in handles:
                count = len(inbound_index.get((node_id, handle), []))
                if count > 1:
                    errors.append(f"Input '{handle}' of node '{node_id}' has {count} inbound edges; expected one.")
        return errors

    def _resolve_inputs(
        self,
        compiled: CompiledNode,
        inbound_index: dict[tuple[str, InputHandle], list[Edge]],
        var_map: dict[str, str],
    ) -> NodeInputs:
        node_id = compiled.node.id
        in_a = self._source_var(inbound_index.get((node_id, InputHandle.A)), var_map)
        in_b = START_VAR
        if compiled.definition.is_combiner:
            in_b = self._source_var(inbound_index.get((node_id, InputHandle.B)), var_map)
        return NodeInputs(in_a=in_a, in_b=in_b)

    @staticmethod
    def _source_var(edges: list[Edge] | None, var_map: dict[str, str]) -> str:
        if not edges:
            return START_VAR
        source = edges[0].source
        source_var = var_map.get(source)
        if not source_var:
            raise CompilationError(
                [f"Internal compiler error: unresolved source variable for '{source}' (pipeline is not in topological order)."]
            )
        return source_var

    def _resolve_final_var(
        self,
        inbound_index: dict[tuple[str, InputHandle], list[Edge]],
        var_map: dict[str, str],
    ) -> str | None:
        edges = inbound_index.get((ROOT_END_ID, InputHandle.A))
        if not edges:
            return None
        return self._source_var(edges, var_map)

    def _allocate_param_slots(self, compiled_nodes: list[CompiledNode]) -> dict[tuple[str, str], int]:
        slots: dict[tuple[str, str], int] = {}
        for compiled in compiled_nodes:
            if not compiled.node.enabled:
                continue
            for spec in compiled.definition.inputs:
                if compiled.node.bindings.get(spec.id) is not None:
                    continue
                if len(slots) >= self._max_modular_params:
                    raise CompilationError(
                        [
                            f"Formula needs more than {self._max_modular_params} unbound parameters; "
                            "bind some inputs to global slots or remove nodes."
                        ]
                    )
                slots[(compiled.node.id, spec.id)] = len(slots)
        return slots

    @staticmethod
    def _render_fragment(
        compiled: CompiledNode,
        out_var: str,
        inputs: NodeInputs,
        slots: dict[tuple[str, str], int],
    ) -> str:
        node = compiled.node
        definition = compiled.definition

        def param(input_id: str) -> str:
            if definition.find_input(input_id) is None:
                raise KeyError(input_id)
            reference = resolve(node, input_id, definition)
            return render_reference(reference, slots.get((node.id, input_id)))

        context = EmissionContext(out_var=out_var, in_a=inputs.in_a, in_b=inputs.in_b, param=param)
        try:
            return definition.emit(context)
        except (KeyError, ValueError) as err:
            raise CompilationError([f"Template value missing for node '{node.id}': {err}"]) from err

    @staticmethod
    def _indent(fragment: str, indent: str) -> list[str]:
        return [f"{indent}{line}" if line.strip() else "" for line in fragment.splitlines()]

    @staticmethod
    def _allocate_var_name(ordinal: int, node_id: str) -> str:
        safe_node = re.sub(r"[^A-Za-z0-9]", "", node_id) or "node"
        return f"v{ordinal}_{safe_node}"

    @staticmethod
    def _wrap_formula(body: list[str]) -> str:
        lines = [FORMULA_SIGNATURE + " {"]
        lines.extend(f"{BODY_INDENT}{line}" if line else "" for line in body)
        lines.append("}")
        return "\n".join(lines)
