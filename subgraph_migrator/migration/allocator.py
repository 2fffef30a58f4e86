# subgraph_migrator/migration/allocator.py
"""
Target deployment id allocation from the metadata cluster's sequence.
"""

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from ..core.errors import AllocationError
from ..core.logging import LoggingMixin
from ..database.connection import DatabaseManager
from ..database.tables import DEPLOYMENT_ID_SEQUENCE
from ..types.records import AllocatedIdentifier, NAMESPACE_PREFIX


def namespace_for(identifier: int) -> str:
    return f"{NAMESPACE_PREFIX}{identifier}"


class IdentifierAllocator(LoggingMixin):
    """Draws the next deployment id from the target metadata cluster's sequence.

    The sequence advance is permanent: an id drawn for a run that later
    fails is never handed out again.
    """

    def __init__(self, sequence: str = DEPLOYMENT_ID_SEQUENCE):
        self.sequence = sequence

    def allocate(self, target_metadata: DatabaseManager) -> AllocatedIdentifier:
        try:
            with target_metadata.get_transaction() as conn:
                next_id = conn.execute(
                    text("SELECT nextval(:sequence)"), {"sequence": self.sequence}
                ).scalar()
        except SQLAlchemyError as e:
            raise AllocationError(f"Failed to get next deployment ID from {self.sequence}: {e}") from e

        if next_id is None:
            raise AllocationError(f"{self.sequence} returned no value")

        identifier = AllocatedIdentifier(id=int(next_id), namespace=namespace_for(int(next_id)))
        self.log_info("Allocated target deployment id",
                      target_id=identifier.id, namespace=identifier.namespace)
        return identifier
