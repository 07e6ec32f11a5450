"""Node collaborators: JSON-RPC transport and lifecycle state."""

from nodesync.node.lifecycle import NodeLifecycle, NodeState
from nodesync.node.transport import HttpNodeTransport, NodeTransport

__all__ = ["HttpNodeTransport", "NodeLifecycle", "NodeState", "NodeTransport"]
