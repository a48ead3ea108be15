"""
Artifact references.

An artifact reference is an opaque string `type[:subtype...]:id`, for example
`github:pr:123` or `video:0b7c...`. The id is the segment after the LAST
colon; everything before it is the entity type. Ids that themselves contain a
colon therefore cannot be addressed through a reference string.
"""

from __future__ import annotations

from dataclasses import dataclass

from knowledge_engine.graph.types import NODE_TYPES, NodeType
from knowledge_engine.kernel.errors import ValidationError


@dataclass(frozen=True)
class ArtifactRef:
    entity_type: str
    entity_id: str

    @property
    def raw(self) -> str:
        return f"{self.entity_type}:{self.entity_id}"

    def node_key(self) -> tuple[NodeType, str]:
        """The (node type, external id) of the graph node this reference names."""
        return resolve_node_key(self.entity_type, self.entity_id)


def parse_artifact_ref(ref: str) -> ArtifactRef:
    if ref is None or not ref.strip():
        raise ValidationError(
            message="Artifact reference is required",
            meta={"field": "artifact_ref"},
        )
    value = ref.strip()
    entity_type, sep, entity_id = value.rpartition(":")
    if not sep or not entity_type or not entity_id:
        raise ValidationError(
            message="Artifact reference must look like type[:subtype]:id",
            meta={"field": "artifact_ref", "value": value},
        )
    return ArtifactRef(entity_type=entity_type.lower(), entity_id=entity_id)


def resolve_node_key(entity_type: str, entity_id: str) -> tuple[NodeType, str]:
    """Map an entity reference onto a graph natural key.

    Node types address their own nodes (`video:abc` -> video node `abc`);
    anything else is an artifact keyed by the full reference.
    """
    normalized = entity_type.strip().lower()
    if normalized in NODE_TYPES:
        return NodeType(normalized), entity_id
    return NodeType.ARTIFACT, f"{normalized}:{entity_id}"
