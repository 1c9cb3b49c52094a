from .rpc import AccountInfo, RpcMethodError, SolanaRpcClient

__all__ = [
    "AccountInfo",
    "RpcMethodError",
    "SolanaRpcClient",
]
