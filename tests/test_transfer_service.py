"""Tests for the transfer service flows."""

import json
from decimal import Decimal

import httpx
import pytest

from conftest import OTHER_RECIPIENT, PAYIN, RECIPIENT, RecordingExchange
from nullroute.chain.solana import SolanaClient
from nullroute.errors import ClientError, IntegrityError, ValidationError
from nullroute.exchange import DryRunExchange, ExchangeStatus
from nullroute.governor import RequestGovernor
from nullroute.ledger.models import TransactionStatus
from nullroute.ledger.repository import LedgerRepository
from nullroute.ledger.routing_map import RoutingMap
from nullroute.services import TransferService


def make_service(exchange, session_factory, routing_factory=None, solana=None) -> TransferService:
    return TransferService(
        governor=RequestGovernor(exchange, requests_per_second=1000),
        routing_map=RoutingMap(routing_factory or session_factory),
        session_factory=session_factory,
        solana=solana,
    )


async def load(session_factory, signature):
    async with session_factory() as session:
        return await LedgerRepository(session).get_transaction_by_signature(signature)


class RejectingExchange(RecordingExchange):
    """Exchange whose creation response fails validation."""

    async def create_exchange(self, *args, **kwargs):
        await self._enter("create")
        raise IntegrityError("Invalid response: payout address mismatch - security validation failed")


def solana_rpc(confirmation_status, err=None) -> SolanaClient:
    def handler(request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        assert payload["method"] == "getSignatureStatuses"
        value = [{"confirmationStatus": confirmation_status, "err": err}]
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": {"value": value}})

    return SolanaClient("https://rpc.test", transport=httpx.MockTransport(handler))


class TestCreateTransfer:

    @pytest.mark.asyncio
    async def test_success_records_transfer_and_mapping(self, session_factory, recording_exchange):
        service = make_service(recording_exchange, session_factory)

        receipt = await service.create_transfer(RECIPIENT, "1.5")

        assert receipt.deposit_address == PAYIN
        assert receipt.recipient_address == RECIPIENT
        assert receipt.amount_sol == Decimal("1.5")
        assert receipt.routing_transaction_id == "ext1"
        assert not receipt.needs_reconciliation
        assert len(receipt.tx_signature) == 21

        tx = await load(session_factory, receipt.tx_signature)
        assert tx.status == TransactionStatus.PENDING
        assert tx.amount_lamports == 1_500_000_000
        assert tx.payin_address == PAYIN
        assert not tx.needs_reconciliation

        assert await service.routing_map.lookup(receipt.tx_signature) == "ext1"

    @pytest.mark.asyncio
    async def test_invalid_recipient_never_reaches_exchange(self, session_factory, recording_exchange):
        service = make_service(recording_exchange, session_factory)

        with pytest.raises(ValidationError):
            await service.create_transfer("not-a-key", "1")
        with pytest.raises(ValidationError):
            await service.create_transfer(RECIPIENT, "-1")

        assert recording_exchange.calls == []

    @pytest.mark.asyncio
    async def test_exchange_rejection_propagates(self, session_factory):
        exchange = RecordingExchange(fail_on={RECIPIENT})
        service = make_service(exchange, session_factory)

        with pytest.raises(ClientError):
            await service.create_transfer(RECIPIENT, "1")

    @pytest.mark.asyncio
    async def test_integrity_failure_stores_nothing(self, session_factory):
        service = make_service(RejectingExchange(), session_factory)

        with pytest.raises(IntegrityError):
            await service.create_transfer(RECIPIENT, "1")

        async with session_factory() as session:
            assert await LedgerRepository(session).get_recent_transactions() == []

    @pytest.mark.asyncio
    async def test_mapping_failure_flags_record(
        self, session_factory, broken_session_factory, recording_exchange
    ):
        """The exchange transaction exists, so the user still gets a deposit address."""
        service = make_service(
            recording_exchange, session_factory, routing_factory=broken_session_factory
        )

        receipt = await service.create_transfer(RECIPIENT, "2")

        assert receipt.deposit_address == PAYIN
        assert receipt.needs_reconciliation

        tx = await load(session_factory, receipt.tx_signature)
        assert tx.needs_reconciliation
        assert "ext1" in tx.error_message

    @pytest.mark.asyncio
    async def test_record_failure_still_returns_receipt(
        self, session_factory, broken_session_factory, recording_exchange
    ):
        service = make_service(
            recording_exchange, broken_session_factory, routing_factory=session_factory
        )

        receipt = await service.create_transfer(RECIPIENT, "2")

        assert receipt.deposit_address == PAYIN
        assert receipt.needs_reconciliation
        assert await RoutingMap(session_factory).lookup(receipt.tx_signature) == "ext1"


class TestEstimateFees:

    @pytest.mark.asyncio
    async def test_estimate(self, session_factory):
        service = make_service(DryRunExchange(), session_factory)

        estimate = await service.estimate_fees("1")

        assert estimate.send_amount == Decimal("1")
        assert estimate.receive_amount == Decimal("0.995")
        assert estimate.fee_percentage == Decimal("0.5")

    @pytest.mark.asyncio
    async def test_zero_amount_rejected(self, session_factory, recording_exchange):
        service = make_service(recording_exchange, session_factory)

        with pytest.raises(ValidationError):
            await service.estimate_fees("0")

        assert recording_exchange.calls == []


class TestStatus:

    @pytest.mark.asyncio
    async def test_pending_transfer_includes_live_status(self, session_factory, recording_exchange):
        service = make_service(recording_exchange, session_factory)
        receipt = await service.create_transfer(RECIPIENT, "1")

        view = await service.get_transaction(receipt.tx_signature)

        assert view.transaction.tx_signature == receipt.tx_signature
        assert view.routing_status.status == ExchangeStatus.WAITING
        assert recording_exchange.calls[-1] == "status:ext1"

    @pytest.mark.asyncio
    async def test_live_status_failure_is_not_fatal(self, session_factory):
        exchange = RecordingExchange(fail_on={"ext1"})
        service = make_service(exchange, session_factory)
        receipt = await service.create_transfer(RECIPIENT, "1")

        view = await service.get_transaction(receipt.tx_signature)

        assert view.transaction is not None
        assert view.routing_status is None

    @pytest.mark.asyncio
    async def test_refresh_then_stored_view_polls_once(self, session_factory, recording_exchange):
        service = make_service(recording_exchange, session_factory)
        receipt = await service.create_transfer(RECIPIENT, "1")

        status = await service.refresh_status(receipt.tx_signature)
        view = await service.get_transaction(receipt.tx_signature, live=False)

        assert status.status == ExchangeStatus.WAITING
        assert view.routing_status is None
        assert view.transaction.routing_status == "waiting"
        assert recording_exchange.calls.count("status:ext1") == 1

    @pytest.mark.asyncio
    async def test_unknown_transaction(self, session_factory, recording_exchange):
        service = make_service(recording_exchange, session_factory)

        assert await service.get_transaction("missing") is None
        assert await service.refresh_status("missing") is None

    @pytest.mark.asyncio
    async def test_poll_until_finished(self, session_factory):
        service = make_service(DryRunExchange(), session_factory)
        receipt = await service.create_transfer(RECIPIENT, "1")

        final = await service.poll_until_terminal(receipt.tx_signature, interval=0)

        assert final.status == ExchangeStatus.FINISHED
        tx = await load(session_factory, receipt.tx_signature)
        assert tx.status == TransactionStatus.CONFIRMED
        assert tx.routing_status == "finished"

        # Settled transfers are not polled again
        assert await service.refresh_status(receipt.tx_signature) is None

    @pytest.mark.asyncio
    async def test_poll_gives_up(self, session_factory, recording_exchange):
        service = make_service(recording_exchange, session_factory)
        service.poll_interval = 0
        service.poll_max_attempts = 3
        receipt = await service.create_transfer(RECIPIENT, "1")

        last = await service.poll_until_terminal(receipt.tx_signature)

        assert last.status == ExchangeStatus.WAITING
        assert recording_exchange.calls.count("status:ext1") == 3

    @pytest.mark.asyncio
    async def test_unmapped_transfer_not_polled(
        self, session_factory, broken_session_factory, recording_exchange
    ):
        service = make_service(
            recording_exchange, session_factory, routing_factory=broken_session_factory
        )
        receipt = await service.create_transfer(RECIPIENT, "1")
        service.routing_map = RoutingMap(session_factory)

        assert await service.refresh_status(receipt.tx_signature) is None

    @pytest.mark.asyncio
    async def test_routing_status_by_external_ref(self, session_factory, recording_exchange):
        service = make_service(recording_exchange, session_factory)

        record = await service.get_routing_status("ext42")

        assert record.id == "ext42"


class TestConfirm:

    @pytest.mark.asyncio
    async def test_confirmed_on_chain(self, session_factory, recording_exchange):
        service = make_service(recording_exchange, session_factory, solana=solana_rpc("finalized"))
        receipt = await service.create_transfer(OTHER_RECIPIENT, "1")

        status = await service.confirm_transaction(receipt.tx_signature, "5" * 88)

        assert status == TransactionStatus.CONFIRMED
        tx = await load(session_factory, receipt.tx_signature)
        assert tx.status == TransactionStatus.CONFIRMED

    @pytest.mark.asyncio
    async def test_failed_on_chain(self, session_factory, recording_exchange):
        service = make_service(
            recording_exchange,
            session_factory,
            solana=solana_rpc("confirmed", err={"InstructionError": [0, "Custom"]}),
        )
        receipt = await service.create_transfer(RECIPIENT, "1")

        status = await service.confirm_transaction(receipt.tx_signature, "5" * 88)

        assert status == TransactionStatus.FAILED
        tx = await load(session_factory, receipt.tx_signature)
        assert tx.error_message == "Transaction failed or not confirmed"

    @pytest.mark.asyncio
    async def test_unknown_transfer(self, session_factory, recording_exchange):
        service = make_service(recording_exchange, session_factory, solana=solana_rpc("finalized"))

        with pytest.raises(ValidationError):
            await service.confirm_transaction("missing", "5" * 88)
