from __future__ import annotations

from collections.abc import Collection
from enum import StrEnum

from pydantic import AliasChoices, BaseModel, Field, field_validator, model_validator

ROOT_START_ID = "root-start"
ROOT_END_ID = "root-end"
SENTINEL_IDS = frozenset({ROOT_START_ID, ROOT_END_ID})
LEGACY_SLOT_PREFIX = "Param"

MAX_GRAPH_NODES = 256
MAX_GRAPH_EDGES = 1_024


class BindingSlot(StrEnum):
    A = "A"
    B = "B"
    C = "C"
    D = "D"
    E = "E"
    F = "F"

    @property
    def uniform_name(self) -> str:
        return f"uParam{self.value}"


class InputHandle(StrEnum):
    A = "a"
    B = "b"


class NodePosition(BaseModel):
    x: float = 0.0
    y: float = 0.0


class NodeCondition(BaseModel):
    active: bool = False
    modulus: int = Field(default=2, ge=1, validation_alias=AliasChoices("modulus", "mod"))
    remainder: int = Field(default=0, ge=0, validation_alias=AliasChoices("remainder", "rem"))

    @model_validator(mode="after")
    def validate_remainder(self) -> "NodeCondition":
        if self.remainder >= self.modulus:
            raise ValueError(
                f"Condition remainder must be in [0, {self.modulus}), got {self.remainder}."
            )
        return self


class PipelineNode(BaseModel):
    id: str = Field(min_length=1, max_length=64)
    type: str = Field(min_length=1)
    enabled: bool = True
    params: dict[str, float] = Field(default_factory=dict)
    bindings: dict[str, BindingSlot | None] = Field(default_factory=dict)
    condition: NodeCondition | None = None
    text: str | None = None

    @field_validator("bindings", mode="before")
    @classmethod
    def normalize_legacy_bindings(cls, value: object) -> object:
        # Saved scenes from older builds spell slots as "ParamA".."ParamF".
        if not isinstance(value, dict):
            return value
        return {
            key: slot[len(LEGACY_SLOT_PREFIX):] if isinstance(slot, str) and slot.startswith(LEGACY_SLOT_PREFIX) else slot
            for key, slot in value.items()
        }


class GraphNode(PipelineNode):
    position: NodePosition = Field(default_factory=NodePosition)

    def to_pipeline_node(self) -> PipelineNode:
        return PipelineNode.model_validate(self.model_dump(exclude={"position"}))


class Edge(BaseModel):
    id: str = Field(min_length=1)
    source: str = Field(min_length=1)
    target: str = Field(min_length=1)
    source_handle: InputHandle | None = None
    target_handle: InputHandle | None = None


def edge_id_for(
    source: str,
    target: str,
    target_handle: InputHandle | None = None,
    taken: Collection[str] = (),
) -> str:
    """Readable edge id, suffixed with a counter when it is already taken.

    Node ids may contain ``-``, so ``e-a-b-c`` can name both ``a -> b-c`` and
    ``a-b -> c``; ``taken`` holds the ids already present in the graph.
    """
    edge_id = f"e-{source}-{target}"
    if target_handle is not None:
        edge_id = f"{edge_id}-{target_handle.value}"
    candidate = edge_id
    counter = 2
    while candidate in taken:
        candidate = f"{edge_id}-{counter}"
        counter += 1
    return candidate


class FractalGraph(BaseModel):
    nodes: list[GraphNode] = Field(default_factory=list)
    edges: list[Edge] = Field(default_factory=list)

    @field_validator("nodes")
    @classmethod
    def validate_node_count(cls, nodes: list[GraphNode]) -> list[GraphNode]:
        if len(nodes) > MAX_GRAPH_NODES:
            raise ValueError(f"Graph exceeds maximum node count ({MAX_GRAPH_NODES})")
        return nodes

    @field_validator("edges")
    @classmethod
    def validate_edge_count(cls, edges: list[Edge]) -> list[Edge]:
        if len(edges) > MAX_GRAPH_EDGES:
            raise ValueError(f"Graph exceeds maximum edge count ({MAX_GRAPH_EDGES})")
        return edges

    @model_validator(mode="after")
    def validate_node_ids(self) -> "FractalGraph":
        ids = [node.id for node in self.nodes]
        if len(ids) != len(set(ids)):
            raise ValueError("Node IDs must be unique")
        reserved = SENTINEL_IDS.intersection(ids)
        if reserved:
            raise ValueError(f"Node IDs {sorted(reserved)} are reserved for graph sentinels")
        return self

    @model_validator(mode="after")
    def validate_edge_ids(self) -> "FractalGraph":
        ids = [edge.id for edge in self.edges]
        if len(ids) != len(set(ids)):
            raise ValueError("Edge IDs must be unique")
        return self

    def node_ids(self) -> set[str]:
        return {node.id for node in self.nodes}

    def find_node(self, node_id: str) -> GraphNode | None:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None


Pipeline = list[PipelineNode]
