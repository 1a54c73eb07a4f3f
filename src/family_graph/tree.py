"""Nested family tree view rooted at one individual."""
from __future__ import annotations

import structlog

from .cancellation import CancellationToken, checkpoint
from .config import CONFIG, EngineConfig
from .models import Individual, TreeNode
from .queries import RelationshipQueryEngine, clamp_generations
from .repository import Repository

logger = structlog.get_logger(__name__)


class TreeMaterializer:
    """Builds ``TreeNode`` structures downward through children.

    Each call keeps its own node cache, so an individual reachable along
    several paths is built once and shared. An individual met again while
    its own subtree is still being built (corrupt cyclic data) becomes a
    leaf.
    """

    def __init__(
        self,
        repository: Repository,
        queries: RelationshipQueryEngine,
        config: EngineConfig = CONFIG,
    ) -> None:
        self.repo = repository
        self.queries = queries
        self.config = config

    def clamp(self, generations: int | None) -> int:
        return clamp_generations(generations, self.config.default_tree_generations, self.config.max_generations)

    async def build_tree(
        self,
        root_id: int,
        generations: int | None = None,
        token: CancellationToken | None = None,
    ) -> TreeNode:
        root = self.queries.subject(root_id)
        depth = self.clamp(generations)

        node_cache: dict[int, TreeNode] = {}
        in_progress: set[int] = set()
        tree = await self._build(root, depth, node_cache, in_progress, token)

        logger.debug("tree.built", root_id=root_id, generations=depth, nodes=len(node_cache))
        return tree

    async def _build(
        self,
        individual: Individual,
        remaining: int,
        node_cache: dict[int, TreeNode],
        in_progress: set[int],
        token: CancellationToken | None,
    ) -> TreeNode:
        await checkpoint(token)

        if individual.id in node_cache:
            return node_cache[individual.id]
        if individual.id in in_progress:
            logger.warning("tree.cycle_detected", individual_id=individual.id)
            return TreeNode(individual=individual)

        in_progress.add(individual.id)
        parents = self.queries.parents_of(individual)
        node = TreeNode(
            individual=individual,
            spouse=self.queries.first_spouse(individual.id),
            parents=[p for p in (parents.father, parents.mother) if p is not None],
        )
        if remaining > 0:
            for child in self.repo.list_children(individual.id):
                node.children.append(await self._build(child, remaining - 1, node_cache, in_progress, token))

        in_progress.discard(individual.id)
        node_cache[individual.id] = node
        return node
