from __future__ import annotations

from ..common.errors import ConflictError, ValidationError
from ..models import StoredFile


CONTRACT_CONFLICT_MESSAGE = "Contract ID is already registered. Enter a unique ID."


class ContractUniquenessGuard:
    """Rejects a contract ID already held by an active file.

    The partial unique index ``uq_files_active_contract_id`` enforces the same
    rule in the database for uploads that race past this check.
    """

    def normalize(self, contract_id: str | None) -> str:
        cleaned = (contract_id or "").strip() if isinstance(contract_id, str) else ""
        if not cleaned:
            raise ValidationError("Contract ID is required and cannot be empty.", code="INVALID_CONTRACT_ID")
        if len(cleaned) > 255:
            raise ValidationError("Contract ID must be <= 255 characters.", code="INVALID_CONTRACT_ID")
        return cleaned

    def find_active(self, contract_id: str) -> StoredFile | None:
        return (
            StoredFile.query.filter(
                StoredFile.contract_id == contract_id,
                StoredFile.is_deleted.is_(False),
            )
            .order_by(StoredFile.id.asc())
            .first()
        )

    def check_available(self, contract_id: str | None) -> str:
        cleaned = self.normalize(contract_id)
        existing = self.find_active(cleaned)
        if existing is not None:
            raise ConflictError(
                CONTRACT_CONFLICT_MESSAGE,
                code="CONTRACT_ID_CONFLICT",
                details={"contract_id": cleaned, "file_id": existing.id},
            )
        return cleaned
