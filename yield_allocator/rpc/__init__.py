"""JSON-RPC venue gateway."""
from .client import JsonRpcClient, RpcError
from .venues import RpcLendingPool, RpcVault

__all__ = ["JsonRpcClient", "RpcError", "RpcLendingPool", "RpcVault"]
