"""
流量图

维护请求日志、节点表和边表，负责聚合并通知渲染端。
"""

from collections.abc import Callable
from dataclasses import dataclass, replace

from loguru import logger

from .classifier import category_color
from .models import (
    ROOT_NODE_CATEGORY,
    ROOT_NODE_COLOR,
    ROOT_NODE_ID,
    ROOT_NODE_LABEL,
    Edge,
    Node,
    RequestRecord,
)

NODE_UPSERTED = "node-upserted"
EDGE_UPSERTED = "edge-upserted"
GRAPH_RESET = "graph-reset"

GraphListener = Callable[[str, Node | Edge], None]


@dataclass(frozen=True)
class GraphSnapshot:
    """某一时刻的节点、边和请求日志"""

    nodes: list[Node]
    edges: list[Edge]
    requests: list[RequestRecord]


class TrafficGraph:
    """
    客户端 → 目标主机 的流量图

    规则：
    - 每个主机名一个节点，首次出现时创建，之后属性不再更新
    - 每对 (source, target) 一条边，后续调用原地累加
    - 请求日志只追加；reset() 整体替换日志、节点和边，只保留根节点
    """

    def __init__(self):
        self._requests: list[RequestRecord] = []
        self._nodes: dict[str, Node] = {}
        self._edges: dict[str, Edge] = {}
        self._listeners: list[GraphListener] = []
        self._add_root()

    # ============== 订阅 ==============

    def subscribe(self, listener: GraphListener) -> Callable[[], None]:
        """
        订阅节点/边变更

        listener 以 (事件名, Node | Edge) 调用，事件名为
        "node-upserted" 或 "edge-upserted"；reset() 后以 "graph-reset"
        和根节点通知一次。

        Returns:
            取消订阅的函数
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, event: str, item: Node | Edge) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, item)
            except Exception:
                logger.exception(f"Graph listener failed on {event}")

    # ============== 聚合 ==============

    def ingest(self, record: RequestRecord) -> None:
        """
        追加一条请求记录并更新图

        没有主机名的记录只进入日志，不参与图的聚合。
        """
        self._requests.append(record)

        if not record.hostname:
            return

        node, created = self._upsert_node(record)
        edge = self._upsert_edge(ROOT_NODE_ID, node.id, record)

        if created:
            self._emit(NODE_UPSERTED, node)
        self._emit(EDGE_UPSERTED, replace(edge))

    def _upsert_node(self, record: RequestRecord) -> tuple[Node, bool]:
        node = self._nodes.get(record.hostname)
        if node is not None:
            return node, False

        service = record.service
        node = Node(
            id=record.hostname,
            label=service.label,
            category=service.category.value,
            color=category_color(service.category),
            hostname=record.hostname,
        )
        self._nodes[node.id] = node
        logger.debug(f"New node {node.id} ({node.category})")
        return node, True

    def _upsert_edge(self, source: str, target: str, record: RequestRecord) -> Edge:
        edge_id = edge_key(source, target)
        edge = self._edges.get(edge_id)

        if edge is None:
            edge = Edge(
                id=edge_id,
                source=source,
                target=target,
                last_method=record.method,
                count=1,
                last_duration_ms=record.duration_ms,
                total_duration_ms=record.duration_ms,
            )
            self._edges[edge_id] = edge
            return edge

        edge.count += 1
        edge.total_duration_ms += record.duration_ms
        edge.last_duration_ms = record.duration_ms
        edge.last_method = record.method
        return edge

    def reset(self) -> None:
        """清空日志、节点和边，只重建根节点"""
        self._requests = []
        self._nodes = {}
        self._edges = {}
        self._add_root()
        self._emit(GRAPH_RESET, self._nodes[ROOT_NODE_ID])

    def _add_root(self) -> None:
        self._nodes[ROOT_NODE_ID] = Node(
            id=ROOT_NODE_ID,
            label=ROOT_NODE_LABEL,
            category=ROOT_NODE_CATEGORY,
            color=ROOT_NODE_COLOR,
        )

    # ============== 查询 ==============

    @property
    def requests(self) -> list[RequestRecord]:
        return list(self._requests)

    @property
    def nodes(self) -> list[Node]:
        return list(self._nodes.values())

    @property
    def edges(self) -> list[Edge]:
        return [replace(edge) for edge in self._edges.values()]

    def get_node(self, node_id: str) -> Node | None:
        return self._nodes.get(node_id)

    def get_edge(self, source: str, target: str) -> Edge | None:
        edge = self._edges.get(edge_key(source, target))
        return replace(edge) if edge else None

    def snapshot(self) -> GraphSnapshot:
        return GraphSnapshot(nodes=self.nodes, edges=self.edges, requests=self.requests)

    def __len__(self) -> int:
        """返回当前请求数"""
        return len(self._requests)


def edge_key(source: str, target: str) -> str:
    return f"{source}->{target}"
