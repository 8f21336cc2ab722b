"""
ingestion/rpc package

Solana JSON-RPC access for account reads.
"""
from .client import AccountInfo, AccountNotFoundError, RpcError, SolanaRpcClient

__all__ = [
    'SolanaRpcClient',
    'AccountInfo',
    'RpcError',
    'AccountNotFoundError',
]
