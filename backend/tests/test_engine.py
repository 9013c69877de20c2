"""
Integration Tests for the Registration Engine

Drives full "continue to payment" passes against an in-memory registration
backend served through httpx.MockTransport:
- Fresh single entity priced at the default fee
- Resuming a mixed list (paid, pending, new)
- Partial batch failure recovered by per-item retry
- Duplicate names rejected with no network call
- Idempotent resubmission and no double charge
- In-flight guard and precondition failures

Run with: pytest tests/test_engine.py -v
"""

import asyncio
import json
from decimal import Decimal

import httpx
import pytest
from unittest.mock import AsyncMock, MagicMock

from registration.client import RegistrationApiClient
from registration.engine import EngineState, RegistrationEngine
from registration.errors import DuplicateNameError, InvalidTransitionError, PreconditionError
from registration.models import DraftEntity, EventRef, PaymentStatus

EVENT = EventRef(name="Summer Classic", year=2025)
TOKEN = "session-token-abc"


def make_entity(**overrides) -> DraftEntity:
    data = {"name": "Hawks", "grade": "5", "sex": "Male", "level": "Gold"}
    data.update(overrides)
    return DraftEntity(**data)


class FakeRegistrationBackend:
    """In-memory registration backend speaking the real wire format."""

    def __init__(self):
        self.entities = {}
        self.calls = []
        self.fail_batch = False
        self.batch_skip = set()
        self.fail_single_for = set()
        self._next_id = 1

    def client_factory(self, token):
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(self.handler))
        return RegistrationApiClient("http://backend.test", token, http_client=http_client)

    def seed(self, name, registered=True, paid=False) -> str:
        entity_id = self._new_id()
        self.entities[entity_id] = {"name": name, "registered": registered, "paid": paid}
        return entity_id

    def mark_paid(self, entity_id):
        self.entities[entity_id]["paid"] = True

    def count(self, path) -> int:
        return sum(1 for _, p in self.calls if p == path)

    def _new_id(self) -> str:
        entity_id = f"{self._next_id:024x}"
        self._next_id += 1
        return entity_id

    def _create(self, name):
        entity_id = self.seed(name)
        return {"_id": entity_id, "name": name, "paymentStatus": "pending"}

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if request.headers.get("Authorization") != f"Bearer {TOKEN}":
            return httpx.Response(401, json={"message": "Unauthorized"})

        if path.startswith("/registrations/check/"):
            self.calls.append(("GET", "/registrations/check"))
            info = self.entities.get(path.split("/")[3])
            return httpx.Response(200, json={
                "isRegistered": bool(info and info["registered"]),
                "isPaid": bool(info and info["paid"]),
            })

        self.calls.append(("POST", path))
        body = json.loads(request.content)

        if path == "/register/tournament-team-multiple":
            if self.fail_batch:
                return httpx.Response(500, json={"message": "batch unavailable"})
            created = [
                self._create(item["name"])
                for item in body["entities"]
                if item["name"] not in self.batch_skip
            ]
            return httpx.Response(201, json={"success": True, "entities": created})

        if path == "/register/tournament-team":
            name = body["entity"]["name"]
            if name in self.fail_single_for:
                return httpx.Response(500, json={"message": "single unavailable"})
            return httpx.Response(201, json={"success": True, "entity": self._create(name)})

        if path == "/teams/register-tournament":
            info = self.entities.setdefault(body["entityId"], {"name": "", "registered": False, "paid": False})
            info["registered"] = True
            return httpx.Response(200, json={"entity": {"_id": body["entityId"], "name": info["name"]}})

        return httpx.Response(404, json={"message": "Not found"})


class TestContinueToPayment:
    """End-to-end passes."""

    @pytest.fixture
    def backend(self):
        return FakeRegistrationBackend()

    @pytest.fixture
    def engine(self, backend):
        return RegistrationEngine(client_factory=backend.client_factory, sleep=AsyncMock())

    @pytest.mark.asyncio
    async def test_fresh_single_entity(self, engine, backend):
        result = await engine.continue_to_payment([make_entity()], EVENT, TOKEN)

        assert engine.state == EngineState.DONE
        assert backend.count("/register/tournament-team") == 1
        assert backend.count("/register/tournament-team-multiple") == 0
        assert len(result.entities) == 1
        assert result.entities[0].has_remote_id
        assert result.entities[0].payment_status == PaymentStatus.PENDING
        assert result.summary.total == Decimal("425.00")
        assert result.checkout["amount_in_cents"] == 42500
        assert result.can_proceed

    @pytest.mark.asyncio
    async def test_mixed_resume(self, engine, backend):
        paid_id = backend.seed("Paid", registered=True, paid=True)
        pending_id = backend.seed("Owes", registered=True, paid=False)
        drafts = [
            make_entity(name="Paid", remote_id=paid_id, payment_status=PaymentStatus.PENDING),
            make_entity(name="Owes", remote_id=pending_id, payment_status=PaymentStatus.PENDING),
            make_entity(name="New"),
        ]

        result = await engine.continue_to_payment(drafts, EVENT, TOKEN)

        assert [e.name for e in result.entities] == ["Paid", "Owes", "New"]
        assert result.entities[0].is_paid
        assert [e.local_key for e in result.settled] == [drafts[0].local_key]
        assert [e.local_key for e in result.pending_payment] == [drafts[1].local_key]
        assert [e.local_key for e in result.created] == [drafts[2].local_key]
        assert result.summary.entity_count == 2
        assert result.summary.total == Decimal("850.00")
        assert len(result.checkout["entities"]) == 2
        assert "'Paid' is already registered and paid for this event." in result.notices
        assert backend.count("/registrations/check") == 2
        assert backend.count("/register/tournament-team") == 1

    @pytest.mark.asyncio
    async def test_partial_batch_failure(self, engine, backend):
        drafts = [make_entity(name=f"Team {i}") for i in range(5)]
        backend.batch_skip = {"Team 1", "Team 3"}

        result = await engine.continue_to_payment(drafts, EVENT, TOKEN)

        assert backend.count("/register/tournament-team-multiple") == 1
        assert backend.count("/register/tournament-team") == 2
        assert len(result.entities) == 5
        assert result.unsaved == []
        assert result.summary.total == Decimal("2125.00")
        assert [a["strategy"] for a in result.attempts] == ["batch", "per_item_retry"]

    @pytest.mark.asyncio
    async def test_batch_outage_falls_back_to_single(self, engine, backend):
        backend.fail_batch = True
        drafts = [make_entity(name="A"), make_entity(name="B")]

        result = await engine.continue_to_payment(drafts, EVENT, TOKEN)

        assert backend.count("/register/tournament-team") == 2
        assert len(result.created) == 2
        assert result.can_proceed

    @pytest.mark.asyncio
    async def test_duplicate_names_rejected_without_network(self, engine, backend):
        drafts = [make_entity(name="Hawks"), make_entity(name="hawks ")]

        with pytest.raises(DuplicateNameError) as exc_info:
            await engine.continue_to_payment(drafts, EVENT, TOKEN)

        assert {e.local_key for e in exc_info.value.entities} == {d.local_key for d in drafts}
        assert backend.calls == []
        assert engine.state == EngineState.FAILED

    @pytest.mark.asyncio
    async def test_idempotent_resubmission(self, engine, backend):
        """A second pass over the saved list creates nothing new."""
        first = await engine.continue_to_payment(
            [make_entity(name="A"), make_entity(name="B")], EVENT, TOKEN
        )
        created_calls = backend.count("/register/tournament-team-multiple")

        second = await engine.continue_to_payment(first.entities, EVENT, TOKEN)

        assert backend.count("/register/tournament-team-multiple") == created_calls
        assert backend.count("/register/tournament-team") == 0
        assert [e.remote_id for e in second.entities] == [e.remote_id for e in first.entities]
        assert len(second.pending_payment) == 2
        assert len(backend.entities) == 2

    @pytest.mark.asyncio
    async def test_no_double_charge(self, engine, backend):
        first = await engine.continue_to_payment([make_entity()], EVENT, TOKEN)
        backend.mark_paid(first.entities[0].remote_id)

        second = await engine.continue_to_payment(first.entities, EVENT, TOKEN)

        assert second.summary.entity_count == 0
        assert second.summary.total == Decimal("0.00")
        assert second.checkout is None
        assert second.entities[0].is_paid
        assert not second.can_proceed

    @pytest.mark.asyncio
    async def test_unsaved_entity_reported(self, engine, backend):
        backend.fail_single_for = {"Hawks"}

        result = await engine.continue_to_payment([make_entity()], EVENT, TOKEN)

        assert result.entities == []
        assert len(result.unsaved) == 1
        assert "HTTP 500" in result.unsaved[0].reason
        assert result.checkout is None
        assert not result.can_proceed
        assert engine.state == EngineState.DONE

    @pytest.mark.asyncio
    async def test_no_valid_entity_blocks_without_io(self, engine, backend):
        drafts = [make_entity(name=""), make_entity(level="Platinum")]

        result = await engine.continue_to_payment(drafts, EVENT, TOKEN)

        assert backend.calls == []
        assert set(result.validation_errors) == {d.local_key for d in drafts}
        assert result.summary.entity_count == 0
        assert not result.can_proceed
        assert engine.state == EngineState.DONE

    @pytest.mark.asyncio
    async def test_custom_fee_and_divisions(self, engine, backend):
        result = await engine.continue_to_payment(
            [make_entity(level="Elite")], EVENT, TOKEN, per_entity_fee="99.50", divisions=["Elite"]
        )

        assert result.summary.total == Decimal("99.50")
        assert result.checkout["amount_in_cents"] == 9950

    def test_to_dict_is_serializable(self):
        """ContinueResult.to_dict() only holds JSON types."""
        from registration.engine import ContinueResult

        data = ContinueResult(entities=[make_entity()]).to_dict()

        assert json.loads(json.dumps(data))["can_proceed"] is False


class TestEngineGuards:
    """Preconditions, in-flight guard and state machine."""

    @pytest.mark.asyncio
    async def test_missing_token(self):
        backend = FakeRegistrationBackend()
        engine = RegistrationEngine(client_factory=backend.client_factory)

        with pytest.raises(PreconditionError) as exc_info:
            await engine.continue_to_payment([make_entity()], EVENT, None)

        assert exc_info.value.parameter == "token"
        assert backend.calls == []
        assert engine.state == EngineState.FAILED
        assert engine.last_error is exc_info.value

    @pytest.mark.asyncio
    async def test_missing_event(self):
        engine = RegistrationEngine(client_factory=MagicMock())

        with pytest.raises(PreconditionError) as exc_info:
            await engine.continue_to_payment([make_entity()], None, TOKEN)

        assert exc_info.value.parameter == "event"
        engine.client_factory.assert_not_called()

    @pytest.mark.asyncio
    async def test_recovers_after_failure(self):
        backend = FakeRegistrationBackend()
        engine = RegistrationEngine(client_factory=backend.client_factory)

        with pytest.raises(PreconditionError):
            await engine.continue_to_payment([make_entity()], EVENT, "")
        result = await engine.continue_to_payment([make_entity()], EVENT, TOKEN)

        assert engine.state == EngineState.DONE
        assert result.can_proceed

    @pytest.mark.asyncio
    async def test_concurrent_call_ignored(self):
        """A second continue while a pass is running returns None and changes nothing."""
        release = asyncio.Event()

        async def slow_create(entity, event):
            await release.wait()
            return {"_id": "64b7f0c2a1d3e4f5a6b7c8d9"}

        client = MagicMock()
        client.check_registration = AsyncMock()
        client.create_entity_single = AsyncMock(side_effect=slow_create)
        engine = RegistrationEngine(client_factory=lambda token: client)

        first = asyncio.ensure_future(engine.continue_to_payment([make_entity()], EVENT, TOKEN))
        for _ in range(10):
            await asyncio.sleep(0)
        assert engine.state == EngineState.PERSISTING
        assert engine.in_flight

        second = await engine.continue_to_payment([make_entity(name="Other")], EVENT, TOKEN)
        assert second is None

        release.set()
        result = await first
        assert len(result.entities) == 1
        assert client.create_entity_single.await_count == 1
        assert engine.state == EngineState.DONE

    @pytest.mark.asyncio
    async def test_unexpected_error_marks_failed(self):
        def broken_factory(token):
            raise RuntimeError("factory exploded")

        engine = RegistrationEngine(client_factory=broken_factory)

        with pytest.raises(RuntimeError):
            await engine.continue_to_payment([make_entity()], EVENT, TOKEN)

        assert engine.state == EngineState.FAILED

    def test_illegal_transition(self):
        engine = RegistrationEngine(client_factory=MagicMock())

        with pytest.raises(InvalidTransitionError):
            engine._transition(EngineState.DONE)
        assert engine.state == EngineState.IDLE

    def test_payment_summary_helper(self):
        engine = RegistrationEngine(client_factory=MagicMock(), per_entity_fee=100)

        summary = engine.payment_summary([make_entity(), make_entity(name="B")])

        assert summary.total == Decimal("200.00")
