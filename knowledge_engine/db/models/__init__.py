from knowledge_engine.db.models.base import Base
from knowledge_engine.db.models.content import (
    ContentItemRow,
    ContentSourceRow,
    TopicClusterMemberRow,
    TopicClusterRow,
    VideoRow,
)
from knowledge_engine.db.models.knowledge import (
    DecisionEventRow,
    DecisionRow,
    KnowledgeEdgeRow,
    KnowledgeNodeRow,
)

__all__ = [
    "Base",
    "ContentItemRow",
    "ContentSourceRow",
    "DecisionEventRow",
    "DecisionRow",
    "KnowledgeEdgeRow",
    "KnowledgeNodeRow",
    "TopicClusterMemberRow",
    "TopicClusterRow",
    "VideoRow",
]
