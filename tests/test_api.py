"""
HTTP API tests.
"""
import pytest
from httpx import AsyncClient

from stk_payments.config import Settings


class TestInitiatePaymentEndpoint:
    """POST /initiate-payment"""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_initiate_payment(
        self, client: AsyncClient, initiate_payload: dict, load_transaction: any
    ) -> None:
        response = await client.post("/initiate-payment", json=initiate_payload)

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "transaction_request_id": "SOFTPID123456",
            "status": "pending",
        }
        assert "X-Request-ID" in response.headers
        assert (await load_transaction("SOFTPID123456")).phone == "254712345678"

    @pytest.mark.integration
    @pytest.mark.asyncio
    @pytest.mark.parametrize("field", ["msisdn", "amount", "reference"])
    async def test_missing_field(
        self, client: AsyncClient, initiate_payload: dict, fake_pesaflux: any, field: str
    ) -> None:
        del initiate_payload[field]

        response = await client.post("/initiate-payment", json=initiate_payload)

        assert response.status_code == 400
        assert response.json() == {"error": f"Missing {field}"}
        assert fake_pesaflux.requests == []

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_invalid_phone(self, client: AsyncClient, initiate_payload: dict) -> None:
        initiate_payload["msisdn"] = "0812345678"

        response = await client.post("/initiate-payment", json=initiate_payload)

        assert response.status_code == 400
        assert "Invalid phone number" in response.json()["error"]

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_non_positive_amount(self, client: AsyncClient, initiate_payload: dict) -> None:
        initiate_payload["amount"] = 0

        response = await client.post("/initiate-payment", json=initiate_payload)

        assert response.status_code == 400
        assert response.json()["error"] == "Invalid request"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_provider_rejection(
        self, client: AsyncClient, initiate_payload: dict, fake_pesaflux: any
    ) -> None:
        fake_pesaflux.initiate_response = {"success": "400", "massage": "Invalid credentials"}

        response = await client.post("/initiate-payment", json=initiate_payload)

        assert response.status_code == 500
        assert response.json() == {"error": "Failed to initiate payment"}
        assert response.headers["Access-Control-Allow-Origin"] == "*"


class TestStatusEndpoints:
    """Cached and direct status reads."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_check_status_db_by_path(
        self, client: AsyncClient, make_transaction: any
    ) -> None:
        await make_transaction("REQ1", status="success", receipt_number="QKJ1")

        response = await client.get("/check-status-db/REQ1")

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["payment"]["status"] == "success"
        assert body["payment"]["mpesaReceiptNumber"] == "QKJ1"
        assert body["payment"]["phoneNumber"] == "254712345678"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_check_status_db_by_body(
        self, client: AsyncClient, make_transaction: any
    ) -> None:
        await make_transaction("REQ2")

        response = await client.post(
            "/check-status-db", json={"transaction_request_id": "REQ2"}
        )

        assert response.status_code == 200
        assert response.json()["payment"]["status"] == "pending"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_check_status_db_unknown(self, client: AsyncClient) -> None:
        response = await client.get("/check-status-db/UNKNOWN")

        assert response.status_code == 404
        assert response.json() == {"error": "Transaction not found"}

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_check_status_db_missing_id(self, client: AsyncClient) -> None:
        get_response = await client.get("/check-status-db")
        post_response = await client.post("/check-status-db", json={})

        assert get_response.status_code == 400
        assert post_response.status_code == 400
        assert post_response.json() == {"error": "Missing transaction_request_id"}

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_check_pesaflux_status_settles(
        self,
        client: AsyncClient,
        make_transaction: any,
        load_transaction: any,
        fake_pesaflux: any,
    ) -> None:
        await make_transaction("REQ3")
        fake_pesaflux.status_responses["REQ3"] = {
            "ResultCode": 0,
            "ResultDesc": "The service request is processed successfully.",
            "TransactionReceipt": "QKJ3",
        }

        response = await client.post(
            "/check-pesaflux-status", json={"transaction_request_id": "REQ3"}
        )

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["status"] == "success"
        assert body["details"]["TransactionReceipt"] == "QKJ3"
        assert (await load_transaction("REQ3")).status == "success"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_check_pesaflux_status_missing_id(self, client: AsyncClient) -> None:
        response = await client.post("/check-pesaflux-status", json={})

        assert response.status_code == 400
        assert response.json() == {"error": "Missing transaction_request_id"}

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_check_pesaflux_status_upstream_failure(
        self, client: AsyncClient, make_transaction: any, fake_pesaflux: any
    ) -> None:
        import httpx

        await make_transaction("REQ4")
        fake_pesaflux.status_responses["REQ4"] = httpx.Response(200, text="not json")

        response = await client.post(
            "/check-pesaflux-status", json={"transaction_request_id": "REQ4"}
        )

        assert response.status_code == 500
        assert response.json() == {"error": "Failed to check status"}


class TestCallbackEndpoint:
    """POST /payment-callback"""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_callback_updates_transaction(
        self, client: AsyncClient, make_transaction: any, load_transaction: any
    ) -> None:
        await make_transaction("REQ5")

        response = await client.post(
            "/payment-callback",
            json={
                "TransactionRequestID": "REQ5",
                "ResultCode": "0",
                "ResultDesc": "The service request is processed successfully.",
                "TransactionReceipt": "QKJ5",
            },
        )

        assert response.status_code == 200
        assert response.json() == {"status": "updated", "transaction_request_id": "REQ5"}
        assert (await load_transaction("REQ5")).receipt_number == "QKJ5"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_callback_invalid_json(self, client: AsyncClient) -> None:
        response = await client.post(
            "/payment-callback",
            content=b"{not json",
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 400
        assert response.json() == {"error": "Invalid JSON"}

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_callback_missing_request_id(self, client: AsyncClient) -> None:
        response = await client.post("/payment-callback", json={"ResultCode": "0"})

        assert response.status_code == 400


class TestAdminEndpoints:
    """Manual success and debug listing."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_manual_success(
        self, client: AsyncClient, make_transaction: any, load_transaction: any
    ) -> None:
        await make_transaction("REQ6")

        response = await client.post("/manual-success", json={"transaction_id": "REQ6"})

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["updated"] is True
        assert body["status"] == "success"
        stored = await load_transaction("REQ6")
        assert stored.receipt_number.startswith("TEST")

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_manual_success_on_settled_row(
        self, client: AsyncClient, make_transaction: any
    ) -> None:
        await make_transaction("REQ7", status="failed")

        response = await client.post("/manual-success", json={"transaction_id": "REQ7"})

        assert response.status_code == 200
        assert response.json()["updated"] is False
        assert response.json()["status"] == "failed"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_manual_success_errors(self, client: AsyncClient) -> None:
        missing = await client.post("/manual-success", json={})
        unknown = await client.post("/manual-success", json={"transaction_id": "NOPE"})

        assert missing.status_code == 400
        assert missing.json() == {"error": "Missing transaction_id"}
        assert unknown.status_code == 404

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_admin_key_enforced_when_configured(
        self, client: AsyncClient, test_settings: Settings, mocker: any
    ) -> None:
        guarded = test_settings.model_copy(update={"admin_api_key": "s3cret"})
        mocker.patch("stk_payments.api.routes.get_settings", return_value=guarded)

        denied = await client.get("/debug-transactions")
        allowed = await client.get("/debug-transactions", headers={"X-Admin-Key": "s3cret"})

        assert denied.status_code == 401
        assert denied.json() == {"error": "Unauthorized"}
        assert allowed.status_code == 200

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_debug_transactions(self, client: AsyncClient, make_transaction: any) -> None:
        await make_transaction("REQ8", phone="254712345678")
        await make_transaction("REQ9", phone="254798765432")

        response = await client.get("/debug-transactions", params={"phone": "0798765432"})

        assert response.status_code == 200
        body = response.json()
        assert body["count"] == 1
        assert body["transactions"][0]["transaction_request_id"] == "REQ9"


class TestTransportBehaviour:
    """CORS, method handling and monitoring endpoints."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_options_preflight(self, client: AsyncClient) -> None:
        response = await client.options("/initiate-payment")

        assert response.status_code == 200
        assert response.headers["Access-Control-Allow-Origin"] == "*"
        assert "POST" in response.headers["Access-Control-Allow-Methods"]

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_browser_origin_is_allowed(
        self, client: AsyncClient, make_transaction: any
    ) -> None:
        await make_transaction("REQ10")

        response = await client.get(
            "/check-status-db/REQ10", headers={"Origin": "https://apply.example.com"}
        )

        assert response.headers["Access-Control-Allow-Origin"] == "*"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_options_on_any_path(self, client: AsyncClient) -> None:
        response = await client.options("/no-such-endpoint")

        assert response.status_code == 200
        assert response.headers["Access-Control-Allow-Origin"] == "*"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_browser_preflight(self, client: AsyncClient) -> None:
        response = await client.options(
            "/initiate-payment",
            headers={
                "Origin": "https://apply.example.com",
                "Access-Control-Request-Method": "POST",
                "Access-Control-Request-Headers": "Content-Type",
            },
        )

        assert response.status_code == 200
        assert response.headers["Access-Control-Allow-Origin"] == "*"
        assert "X-Request-ID" in response.headers

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_wrong_method(self, client: AsyncClient) -> None:
        response = await client.get("/initiate-payment")

        assert response.status_code == 405
        assert "error" in response.json()

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_unknown_path(self, client: AsyncClient) -> None:
        get_response = await client.get("/no-such-endpoint")
        post_response = await client.post("/no-such-endpoint", json={})

        assert get_response.status_code == 404
        assert get_response.json() == {"error": "Not Found"}
        assert post_response.status_code == 404
        assert get_response.headers["Access-Control-Allow-Origin"] == "*"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_health(self, client: AsyncClient, session_factory: any, mocker: any) -> None:
        mocker.patch(
            "stk_payments.monitoring.health.get_session_factory", return_value=session_factory
        )

        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_liveness(self, client: AsyncClient) -> None:
        response = await client.get("/health/live")

        assert response.status_code == 200
        assert response.json()["status"] == "alive"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_metrics(self, client: AsyncClient, initiate_payload: dict) -> None:
        await client.post("/initiate-payment", json=initiate_payload)

        response = await client.get("/metrics")

        assert response.status_code == 200
        assert "payment_initiations_total" in response.text
        assert "pesaflux_api_requests_total" in response.text
