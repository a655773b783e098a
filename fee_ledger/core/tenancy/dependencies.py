from typing import Annotated

from fastapi import Header

from fee_ledger.core.exceptions import ValidationError


async def get_school_id(
    x_school_id: Annotated[str | None, Header(alias="X-School-ID")] = None,
) -> int:
    """
    Dependency returning the school the request is scoped to.

    The header is set by the upstream gateway after it has resolved and
    authorized the tenant; it is trusted as-is here.

    Usage:
        @router.get("/invoices")
        async def list_invoices(school_id: int = Depends(get_school_id)):
            ...
    """
    if not x_school_id:
        raise ValidationError("X-School-ID header required", field="X-School-ID")
    try:
        school_id = int(x_school_id)
    except ValueError:
        raise ValidationError("X-School-ID must be an integer", field="X-School-ID")
    if school_id <= 0:
        raise ValidationError("X-School-ID must be positive", field="X-School-ID")
    return school_id


async def get_user_id(
    x_user_id: Annotated[str | None, Header(alias="X-User-ID")] = None,
) -> int | None:
    """Acting user id forwarded by the gateway, recorded in audit logs."""
    if not x_user_id:
        return None
    try:
        return int(x_user_id)
    except ValueError:
        raise ValidationError("X-User-ID must be an integer", field="X-User-ID")
