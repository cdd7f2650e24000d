from .base import Submitter
from .rpc import RpcSubmitter, RpcSubmitterConfig, translate_rpc_error

__all__ = ["Submitter", "RpcSubmitter", "RpcSubmitterConfig", "translate_rpc_error"]
