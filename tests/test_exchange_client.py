"""Tests for the exchange API clients and backoff policy."""

import json
from decimal import Decimal

import httpx
import pytest

from conftest import OTHER_RECIPIENT, PAYIN, RECIPIENT
from nullroute.config import Settings
from nullroute.errors import (
    ClientError,
    ConfigurationError,
    ExchangeTimeoutError,
    IntegrityError,
    TransientError,
    ValidationError,
)
from nullroute.exchange import (
    BackoffPolicy,
    ChangeNowClient,
    DryRunExchange,
    ExchangeStatus,
    create_backoff_policy,
    create_exchange_client,
)
from nullroute.exchange.changenow import API_KEY_HEADER, build_fee_estimate
from nullroute.governor import CreateTransactionRequest, RequestGovernor

API_URL = "https://exchange.test/v2"


class RecordingBackoff(BackoffPolicy):
    """Backoff policy that records delays instead of sleeping."""

    def __post_init__(self):
        super().__post_init__()
        self.delays: list[float] = []

    async def sleep(self, delay: float) -> None:
        self.delays.append(delay)


def exchange_body(**overrides) -> dict:
    body = {
        "id": "a1b2c3d4",
        "payinAddress": PAYIN,
        "payoutAddress": RECIPIENT,
        "fromCurrency": "sol",
        "toCurrency": "sol",
        "fromAmount": 1.5,
        "toAmount": 1.49,
        "status": "waiting",
    }
    body.update(overrides)
    return body


class Scripted:
    """MockTransport handler that replays a list of responses or exceptions."""

    def __init__(self, *steps):
        self.steps = list(steps)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        step = self.steps.pop(0) if len(self.steps) > 1 else self.steps[0]
        if isinstance(step, Exception):
            raise step
        if isinstance(step, type) and issubclass(step, Exception):
            raise step("scripted failure", request=request)
        status, body = step
        return httpx.Response(status, json=body)


def make_client(handler, backoff=None, api_key="test-key") -> ChangeNowClient:
    return ChangeNowClient(
        api_key=api_key,
        base_url=API_URL,
        backoff=backoff or RecordingBackoff(),
        transport=httpx.MockTransport(handler),
    )


async def create(client: ChangeNowClient, address: str = RECIPIENT, **kwargs):
    kwargs.setdefault("from_amount", Decimal("1.5"))
    return await client.create_exchange("sol", "sol", address, **kwargs)


class TestCreateExchange:
    """POST /exchange."""

    @pytest.mark.asyncio
    async def test_success(self):
        handler = Scripted((200, exchange_body()))
        client = make_client(handler)

        outcome = await create(client)

        assert outcome.id == "a1b2c3d4"
        assert outcome.payin_address == PAYIN
        assert outcome.payout_address == RECIPIENT
        assert outcome.to_amount == Decimal("1.49")
        assert outcome.status == ExchangeStatus.WAITING

        request = handler.requests[0]
        assert request.method == "POST"
        assert str(request.url) == f"{API_URL}/exchange"
        assert request.headers[API_KEY_HEADER] == "test-key"
        sent = json.loads(request.content)
        assert sent["address"] == RECIPIENT
        assert sent["fromAmount"] == 1.5
        assert sent["flow"] == "standard"
        assert "toAmount" not in sent

    @pytest.mark.asyncio
    async def test_through_governor(self):
        """Deposit address comes back from a governed creation."""
        client = make_client(Scripted((200, exchange_body())))
        governor = RequestGovernor(client)

        outcome = await governor.enqueue_create_transaction(
            CreateTransactionRequest(address=RECIPIENT, from_amount=Decimal("1.5"))
        )

        assert outcome.payin_address == PAYIN
        assert governor.get_queue_status() == {"queue_length": 0, "processing": False}

    @pytest.mark.asyncio
    async def test_retries_server_errors_then_succeeds(self):
        """503, 503, 200 -> three attempts with 1s then 2s between."""
        handler = Scripted(
            (503, {"message": "Service unavailable"}),
            (503, {"message": "Service unavailable"}),
            (200, exchange_body()),
        )
        backoff = RecordingBackoff()
        client = make_client(handler, backoff=backoff)

        outcome = await create(client)

        assert outcome.id == "a1b2c3d4"
        assert len(handler.requests) == 3
        assert backoff.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_server_errors_exhaust_attempts(self):
        handler = Scripted((500, {"message": "Internal error"}))
        backoff = RecordingBackoff()
        client = make_client(handler, backoff=backoff)

        with pytest.raises(TransientError) as exc_info:
            await create(client)

        assert exc_info.value.attempts == 3
        assert exc_info.value.status_code == 500
        assert exc_info.value.message == "Internal error"
        assert len(handler.requests) == 3

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self):
        handler = Scripted((400, {"message": "Amount is less than minimal"}))
        backoff = RecordingBackoff()
        client = make_client(handler, backoff=backoff)

        with pytest.raises(ClientError) as exc_info:
            await create(client)

        assert exc_info.value.status_code == 400
        assert exc_info.value.message == "Amount is less than minimal"
        assert len(handler.requests) == 1
        assert backoff.delays == []

    @pytest.mark.asyncio
    async def test_error_field_used_as_message(self):
        client = make_client(Scripted((401, {"error": "Unauthorized"})))

        with pytest.raises(ClientError, match="Unauthorized"):
            await create(client)

    @pytest.mark.asyncio
    async def test_timeout_not_retried(self):
        """A timeout is ambiguous, so exactly one attempt is made."""
        handler = Scripted(httpx.ReadTimeout)
        backoff = RecordingBackoff()
        client = make_client(handler, backoff=backoff)

        with pytest.raises(ExchangeTimeoutError):
            await create(client)

        assert len(handler.requests) == 1
        assert backoff.delays == []

    @pytest.mark.asyncio
    async def test_network_error_retried(self):
        handler = Scripted(httpx.ConnectError, (200, exchange_body()))
        backoff = RecordingBackoff()
        client = make_client(handler, backoff=backoff)

        outcome = await create(client)

        assert outcome.id == "a1b2c3d4"
        assert backoff.delays == [1.0]

    @pytest.mark.asyncio
    async def test_payout_mismatch_rejected(self):
        client = make_client(Scripted((200, exchange_body(payoutAddress=OTHER_RECIPIENT))))

        with pytest.raises(IntegrityError, match="payout address mismatch"):
            await create(client)

    @pytest.mark.asyncio
    async def test_missing_id_rejected(self):
        body = exchange_body()
        del body["id"]
        client = make_client(Scripted((200, body)))

        with pytest.raises(IntegrityError, match="transaction ID"):
            await create(client)

    @pytest.mark.asyncio
    async def test_malformed_payin_rejected(self):
        client = make_client(Scripted((200, exchange_body(payinAddress="0xnot-solana"))))

        with pytest.raises(IntegrityError, match="deposit address"):
            await create(client)

    @pytest.mark.asyncio
    async def test_non_json_response_rejected(self):
        def handler(request):
            return httpx.Response(200, content=b"<html>oops</html>")

        client = make_client(handler)

        with pytest.raises(IntegrityError):
            await create(client)

    @pytest.mark.asyncio
    async def test_invalid_input_never_sent(self):
        handler = Scripted((200, exchange_body()))
        client = make_client(handler)

        with pytest.raises(ValidationError):
            await create(client, address="")
        with pytest.raises(ValidationError):
            await create(client, address="not-a-key")
        with pytest.raises(ValidationError):
            await create(client, from_amount=Decimal("0"))
        with pytest.raises(ValidationError):
            await create(client, to_amount=Decimal("1"))
        with pytest.raises(ValidationError):
            await create(client, flow="instant")

        assert handler.requests == []

    @pytest.mark.asyncio
    async def test_missing_api_key(self):
        handler = Scripted((200, exchange_body()))
        client = make_client(handler, api_key="")

        with pytest.raises(ConfigurationError):
            await create(client)

        assert handler.requests == []


class TestGetStatus:
    """GET /exchange/{id}."""

    @pytest.mark.asyncio
    async def test_status_parsed(self):
        handler = Scripted(
            (200, exchange_body(status="finished", payoutHash="abc123", toAmount="1.49"))
        )
        client = make_client(handler)

        record = await client.get_status("a1b2c3d4")

        assert record.status == ExchangeStatus.FINISHED
        assert record.is_terminal
        assert record.payout_hash == "abc123"
        assert str(handler.requests[0].url) == f"{API_URL}/exchange/a1b2c3d4"

    @pytest.mark.asyncio
    async def test_unknown_status_rejected(self):
        client = make_client(Scripted((200, exchange_body(status="teleporting"))))

        with pytest.raises(IntegrityError):
            await client.get_status("a1b2c3d4")

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "token, expected",
        [
            ("new", ExchangeStatus.WAITING),
            ("verifying", ExchangeStatus.CONFIRMING),
            ("hold", ExchangeStatus.CONFIRMING),
        ],
    )
    async def test_pre_processing_status_mapped(self, token, expected):
        client = make_client(Scripted((200, exchange_body(status=token))))

        record = await client.get_status("a1b2c3d4")

        assert record.status == expected
        assert not record.is_terminal

    @pytest.mark.asyncio
    async def test_id_mismatch_rejected(self):
        client = make_client(Scripted((200, exchange_body(id="e5f6a7b8", status="finished"))))

        with pytest.raises(IntegrityError, match="transaction ID mismatch"):
            await client.get_status("a1b2c3d4")

    @pytest.mark.asyncio
    async def test_single_attempt(self):
        handler = Scripted((503, {"message": "busy"}))
        client = make_client(handler)

        with pytest.raises(TransientError):
            await client.get_status("a1b2c3d4")

        assert len(handler.requests) == 1

    @pytest.mark.asyncio
    async def test_not_found(self):
        client = make_client(Scripted((404, {"message": "Transaction not found"})))

        with pytest.raises(ClientError) as exc_info:
            await client.get_status("missing")

        assert exc_info.value.status_code == 404


class TestEstimateFees:
    """Fee estimates derived from GET /exchange/range."""

    @pytest.mark.asyncio
    async def test_fee_from_rate(self):
        handler = Scripted((200, {"fromAmount": "2", "toAmount": "1.98"}))
        client = make_client(handler)

        estimate = await client.estimate_fees("sol", "sol", Decimal("2"))

        assert estimate.receive_amount == Decimal("1.98")
        assert estimate.fee_amount == Decimal("0.02")
        assert estimate.fee_percentage == Decimal("1")
        assert estimate.is_valid
        assert handler.requests[0].url.params["fromAmount"] == "2"

    def test_negative_fee_clamped(self):
        estimate = build_fee_estimate(Decimal("1"), Decimal("1.1"))

        assert estimate.fee_amount == Decimal("0")
        assert estimate.fee_percentage == Decimal("0")

    @pytest.mark.asyncio
    async def test_rejects_zero_amount(self):
        handler = Scripted((200, {}))
        client = make_client(handler)

        with pytest.raises(ValidationError):
            await client.estimate_fees("sol", "sol", 0)

        assert handler.requests == []


class TestBackoffPolicy:

    def test_linear_delays(self):
        policy = BackoffPolicy()

        assert [policy.delay_for(n) for n in (1, 2, 3)] == [1.0, 2.0, 3.0]

    def test_delay_capped(self):
        policy = BackoffPolicy(max_delay=1.5)

        assert policy.delay_for(5) == 1.5

    def test_requires_an_attempt(self):
        with pytest.raises(ValueError):
            BackoffPolicy(max_attempts=0)

    @pytest.mark.asyncio
    async def test_no_retry(self):
        calls = []

        async def operation():
            calls.append(1)
            raise TransientError("down", status_code=502)

        with pytest.raises(TransientError) as exc_info:
            await BackoffPolicy.no_retry().run(operation)

        assert len(calls) == 1
        assert exc_info.value.attempts == 1

    def test_from_settings(self):
        policy = create_backoff_policy(
            Settings(exchange_max_retries=4, exchange_retry_base_delay=0.5)
        )

        assert policy.max_attempts == 5
        assert policy.delay_for(2) == 1.0


class TestDryRunExchange:

    @pytest.mark.asyncio
    async def test_create_echoes_payout(self):
        exchange = DryRunExchange()

        outcome = await exchange.create_exchange("sol", "sol", RECIPIENT, from_amount="2")

        assert outcome.payout_address == RECIPIENT
        assert outcome.to_amount == Decimal("1.990000000")
        assert len(outcome.payin_address) >= 32

    @pytest.mark.asyncio
    async def test_status_progresses_to_finished(self):
        exchange = DryRunExchange()
        outcome = await exchange.create_exchange("sol", "sol", RECIPIENT, from_amount="1")

        statuses = [(await exchange.get_status(outcome.id)).status for _ in range(6)]

        assert statuses == [
            ExchangeStatus.WAITING,
            ExchangeStatus.CONFIRMING,
            ExchangeStatus.EXCHANGING,
            ExchangeStatus.SENDING,
            ExchangeStatus.FINISHED,
            ExchangeStatus.FINISHED,
        ]

    @pytest.mark.asyncio
    async def test_unknown_ref(self):
        with pytest.raises(ValidationError):
            await DryRunExchange().get_status("nope")


class TestFactory:

    def test_dry_run_by_default(self):
        client = create_exchange_client(Settings(dry_run=True, changenow_api_key="key"))
        assert isinstance(client, DryRunExchange)

    def test_real_client_with_key(self):
        client = create_exchange_client(Settings(dry_run=False, changenow_api_key="key"))

        assert isinstance(client, ChangeNowClient)
        assert client.backoff.max_attempts == 3

    @pytest.mark.parametrize("api_key", ["", "   "])
    def test_live_mode_requires_key(self, api_key):
        """No silent switch to simulated deposit addresses outside dry-run."""
        settings = Settings(environment="production", dry_run=False, changenow_api_key=api_key)

        with pytest.raises(ConfigurationError, match="CHANGENOW_API_KEY"):
            create_exchange_client(settings)
