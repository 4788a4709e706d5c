"""
Infrastructure layer - external system integrations.
Keeps business logic clean from implementation details.
"""

from .redis_client import get_redis, close_redis
from .rpc_client import RpcClient, RpcError, RpcTransportError, get_rpc_client, close_rpc_client

__all__ = [
    'get_redis', 'close_redis',
    'RpcClient', 'RpcError', 'RpcTransportError', 'get_rpc_client', 'close_rpc_client',
]
