import logging

from claim_ledger.adapters.memory_store import InMemoryLedgerStore
from claim_ledger.config import settings
from claim_ledger.core.broadcaster import ClaimBroadcaster
from claim_ledger.domain.services import ClaimLedgerService
from claim_ledger.ports.common import SystemClockAdapter, UuidIdAdapter
from claim_ledger.ports.hash import NativeHashAdapter
from claim_ledger.ports.store import ILedgerStorePort

logging.basicConfig(
    level=getattr(logging, settings.log_level, logging.INFO),
    format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
)
logger = logging.getLogger("claim-ledger-bootstrap")

_service = None
_broadcaster = None


def build_store() -> ILedgerStorePort:
    storage_type = settings.storage_type
    logger.info(f"🚀 Initializing Claim Ledger with storage_type={storage_type}")

    if storage_type == "postgres":
        from claim_ledger.adapters.postgres_store import PostgresLedgerStore
        return PostgresLedgerStore(settings.database_url)
    return InMemoryLedgerStore()


def bootstrap() -> ClaimLedgerService:
    """Wire adapters into the domain service (Composition Root)."""
    global _broadcaster
    _broadcaster = ClaimBroadcaster(max_queue_size=settings.broadcast_queue_size)
    return ClaimLedgerService(
        store=build_store(),
        clock=SystemClockAdapter(),
        id_gen=UuidIdAdapter(),
        hash_port=NativeHashAdapter(),
        broadcaster=_broadcaster,
        default_height=settings.tree_height,
    )


def get_ledger_service() -> ClaimLedgerService:
    """Direct accessor for FastAPI dependency injection."""
    global _service
    if _service is None:
        _service = bootstrap()
    return _service


def get_broadcaster() -> ClaimBroadcaster:
    """Direct accessor for FastAPI dependency injection."""
    get_ledger_service()
    return _broadcaster
