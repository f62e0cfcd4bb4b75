"""
PesaFlux client tests against an in-process fake provider.
"""
import httpx
import pytest

from stk_payments.config import Settings
from stk_payments.integrations.pesaflux_client import (
    PesaFluxClient,
    PesaFluxError,
    PesaFluxErrorType,
)


class TestInitiateStkPush:
    """STK push initiation."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_accepted_push_carries_credentials(
        self, pesaflux_client: PesaFluxClient, fake_pesaflux: any
    ) -> None:
        result = await pesaflux_client.initiate_stk_push(
            msisdn="254712345678", amount=139, reference="CRFF-1-1"
        )

        assert result["transaction_request_id"] == "SOFTPID123456"
        sent = fake_pesaflux.calls_to("/initiatestk")
        assert sent == [
            {
                "api_key": "PSFX_TEST_KEY",
                "email": "merchant@example.com",
                "amount": 139,
                "msisdn": "254712345678",
                "reference": "CRFF-1-1",
            }
        ]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_integer_success_flag_is_accepted(
        self, pesaflux_client: PesaFluxClient, fake_pesaflux: any
    ) -> None:
        fake_pesaflux.initiate_response = {"success": 200, "transaction_request_id": "SOFTPID9"}

        result = await pesaflux_client.initiate_stk_push("254712345678", 10, "CRFF-1-2")

        assert result["transaction_request_id"] == "SOFTPID9"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_rejected_push(
        self, pesaflux_client: PesaFluxClient, fake_pesaflux: any
    ) -> None:
        fake_pesaflux.initiate_response = {"success": "400", "massage": "Invalid API key"}

        with pytest.raises(PesaFluxError) as exc_info:
            await pesaflux_client.initiate_stk_push("254712345678", 139, "CRFF-1-3")

        assert exc_info.value.error_type is PesaFluxErrorType.REJECTED
        assert str(exc_info.value) == "Invalid API key"
        assert exc_info.value.payload == {"success": "400", "massage": "Invalid API key"}

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_success_without_request_id_is_rejected(
        self, pesaflux_client: PesaFluxClient, fake_pesaflux: any
    ) -> None:
        fake_pesaflux.initiate_response = {"success": "200"}

        with pytest.raises(PesaFluxError) as exc_info:
            await pesaflux_client.initiate_stk_push("254712345678", 139, "CRFF-1-4")

        assert exc_info.value.error_type is PesaFluxErrorType.REJECTED

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_non_json_body_is_malformed(
        self, pesaflux_client: PesaFluxClient, fake_pesaflux: any
    ) -> None:
        fake_pesaflux.initiate_response = httpx.Response(200, text="<html>gateway</html>")

        with pytest.raises(PesaFluxError) as exc_info:
            await pesaflux_client.initiate_stk_push("254712345678", 139, "CRFF-1-5")

        assert exc_info.value.error_type is PesaFluxErrorType.MALFORMED

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_server_error_is_transient_and_not_retried(
        self, pesaflux_client: PesaFluxClient, fake_pesaflux: any
    ) -> None:
        fake_pesaflux.initiate_status_code = 503

        with pytest.raises(PesaFluxError) as exc_info:
            await pesaflux_client.initiate_stk_push("254712345678", 139, "CRFF-1-6")

        assert exc_info.value.error_type is PesaFluxErrorType.TRANSIENT
        assert len(fake_pesaflux.calls_to("/initiatestk")) == 1


class TestCheckStatus:
    """Transaction status queries."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_returns_raw_payload(
        self, pesaflux_client: PesaFluxClient, fake_pesaflux: any
    ) -> None:
        fake_pesaflux.status_responses["SOFTPID1"] = {
            "ResultCode": "0",
            "ResultDesc": "The service request is processed successfully.",
            "TransactionReceipt": "QKJ7ABC123",
        }

        result = await pesaflux_client.check_status("SOFTPID1")

        assert result["TransactionReceipt"] == "QKJ7ABC123"
        assert fake_pesaflux.calls_to("/checkstatus") == [
            {
                "api_key": "PSFX_TEST_KEY",
                "email": "merchant@example.com",
                "transaction_request_id": "SOFTPID1",
            }
        ]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_transport_error_is_retried(
        self, test_settings: Settings, fake_pesaflux: any
    ) -> None:
        settings = test_settings.model_copy(update={"pesaflux_status_retries": 2})
        fake_pesaflux.errors.append(httpx.ConnectError("connection refused"))
        fake_pesaflux.status_responses["SOFTPID2"] = {"ResultCode": 1032}

        async with httpx.AsyncClient(
            transport=httpx.MockTransport(fake_pesaflux.handler)
        ) as http_client:
            client = PesaFluxClient(settings=settings, http_client=http_client)
            result = await client.check_status("SOFTPID2")

        assert result == {"ResultCode": 1032}
        assert len(fake_pesaflux.calls_to("/checkstatus")) == 2

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_exhausted_retries_raise_transient(
        self, pesaflux_client: PesaFluxClient, fake_pesaflux: any
    ) -> None:
        fake_pesaflux.errors.append(httpx.ConnectError("connection refused"))

        with pytest.raises(PesaFluxError) as exc_info:
            await pesaflux_client.check_status("SOFTPID3")

        assert exc_info.value.error_type is PesaFluxErrorType.TRANSIENT
        assert isinstance(exc_info.value.original_error, httpx.ConnectError)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_malformed_payload_is_not_retried(
        self, test_settings: Settings, fake_pesaflux: any
    ) -> None:
        settings = test_settings.model_copy(update={"pesaflux_status_retries": 3})
        fake_pesaflux.status_responses["SOFTPID4"] = httpx.Response(200, json=["not", "an", "object"])

        async with httpx.AsyncClient(
            transport=httpx.MockTransport(fake_pesaflux.handler)
        ) as http_client:
            client = PesaFluxClient(settings=settings, http_client=http_client)
            with pytest.raises(PesaFluxError) as exc_info:
                await client.check_status("SOFTPID4")

        assert exc_info.value.error_type is PesaFluxErrorType.MALFORMED
        assert len(fake_pesaflux.calls_to("/checkstatus")) == 1
