import pytest
from httpx import ASGITransport, AsyncClient

from fee_ledger.core.exceptions import ValidationError
from fee_ledger.core.exceptions.handlers import _friendly_db_error
from fee_ledger.core.tenancy import get_school_id, get_user_id
from fee_ledger.main import app


class TestSchoolScope:
    """Tests for the X-School-ID / X-User-ID dependencies."""

    async def test_valid_school_id(self):
        assert await get_school_id("42") == 42

    @pytest.mark.parametrize("value", [None, "", "abc", "0", "-3"])
    async def test_invalid_school_id(self, value):
        with pytest.raises(ValidationError):
            await get_school_id(value)

    async def test_user_id_is_optional(self):
        assert await get_user_id(None) is None
        assert await get_user_id("7") == 7

    async def test_non_numeric_user_id(self):
        with pytest.raises(ValidationError):
            await get_user_id("admin")

    async def test_request_without_school_header_is_rejected(self, client: AsyncClient):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as bare:
            response = await bare.get("/api/v1/invoices")

        assert response.status_code == 422
        body = response.json()
        assert body["success"] is False
        assert body["message"] == "X-School-ID header required"

    async def test_health(self, client: AsyncClient):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}


class TestDatabaseErrorMessages:
    """Constraint violations are turned into stable messages."""

    def test_duplicate_receipt_number(self):
        exc = Exception('duplicate key value violates unique constraint "uq_payment_school_receipt" '
                        "DETAIL: Key (school_id, receipt_number)=(1, RCP-1) already exists.")
        message, field, status_code = _friendly_db_error(exc)
        assert (message, field, status_code) == ("Receipt number already exists", "receipt_number", 409)

    def test_duplicate_transaction_id(self):
        exc = Exception("UNIQUE constraint failed: payments.transaction_id")
        message, field, status_code = _friendly_db_error(exc)
        assert field == "transaction_id"
        assert status_code == 409
