"""In-memory data stores for installment plans and modifications."""

from installment_engine.store.installment import InstallmentDataStore

__all__ = ["InstallmentDataStore"]
