from fee_ledger.core.tenancy.dependencies import get_school_id, get_user_id

__all__ = ["get_school_id", "get_user_id"]
