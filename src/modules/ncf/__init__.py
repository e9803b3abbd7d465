from src.modules.ncf.models import NCFBatch, NCFBatchStatus, NCFIssuance
from src.modules.ncf.allocator import NCFAllocator
from src.modules.ncf.service import NCFService
from src.modules.ncf.router import router

__all__ = [
    "NCFBatch",
    "NCFBatchStatus",
    "NCFIssuance",
    "NCFAllocator",
    "NCFService",
    "router",
]
