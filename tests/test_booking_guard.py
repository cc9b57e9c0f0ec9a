"""
Tests for the BookingConflictGuard and the in-memory store behind it.
"""

import asyncio
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import time
from itertools import count
from time import sleep

import pendulum
import pytest

from slotguard.adapters.memory_store import InMemoryBookingStore
from slotguard.domain.exceptions import (
    AppointmentConflictError,
    AppointmentNotFoundError,
    BlockedConflictError,
    BusinessNotFoundError,
    ValidationError,
)
from slotguard.domain.models import (
    Appointment,
    AppointmentStatus,
    BlockedSlot,
    BusinessSchedule,
    TimeOfDayRange,
    TimeRange,
)
from slotguard.services.booking_guard import BookingConflictGuard


TZ = "Europe/Berlin"
CUSTOMER = {"name": "Max Mustermann", "email": "Max@Example.com"}


def _at(hour: int, minute: int = 0, day: int = 25) -> pendulum.DateTime:
    return pendulum.datetime(2024, 11, day, hour, minute, tz=TZ)


NOW = _at(8)


def _schedule(business_id: str = "salon") -> BusinessSchedule:
    return BusinessSchedule(
        business_id=business_id,
        available_days=frozenset(["monday", "tuesday", "wednesday", "thursday", "friday"]),
        available_hours=TimeOfDayRange(start=time(9), end=time(17)),
        slot_duration_minutes=60,
        timezone=TZ,
    )


class SlowWriteStore(InMemoryBookingStore):
    """Holds the business lock a little longer, widening any check-then-insert race."""

    def _write(self, appointment):
        sleep(0.01)
        super()._write(appointment)


def _store(store_class=InMemoryBookingStore, **kwargs) -> InMemoryBookingStore:
    store = store_class(**kwargs)
    store.add_business(_schedule("salon"))
    store.add_business(_schedule("barber"))
    store.seed_appointment(
        Appointment(
            id="apt-1",
            business_id="salon",
            start=_at(10),
            end=_at(11),
            status=AppointmentStatus.CONFIRMED,
        )
    )
    store.seed_blocked_slot(
        BlockedSlot(id="block-1", business_id="salon", start=_at(15), end=_at(16), reason="Meeting")
    )
    return store


def _guard(store=None) -> BookingConflictGuard:
    return BookingConflictGuard(store or _store(), clock=lambda: NOW)


class TestTryCreateAppointment:
    """Tests for BookingConflictGuard.try_create_appointment."""

    def test_free_interval_is_booked(self):
        store = _store()
        guard = _guard(store)

        appointment = asyncio.run(
            guard.try_create_appointment("salon", (_at(11), _at(12)), CUSTOMER)
        )

        assert appointment.business_id == "salon"
        assert appointment.start == _at(11)
        assert appointment.end == _at(12)
        assert appointment.status is AppointmentStatus.PENDING
        assert appointment.cancelled_at is None
        assert appointment.created_at == NOW
        assert appointment.customer.email == "max@example.com"
        assert len(appointment.booking_token) == 32
        int(appointment.booking_token, 16)
        assert asyncio.run(store.get_appointment(appointment.id)) == appointment

    def test_accepts_time_range(self):
        appointment = asyncio.run(
            _guard().try_create_appointment("salon", TimeRange(start=_at(13), end=_at(14)), CUSTOMER)
        )

        assert appointment.start == _at(13)

    def test_back_to_back_is_allowed(self):
        appointment = asyncio.run(
            _guard().try_create_appointment("salon", (_at(11), _at(11, 30)), CUSTOMER)
        )

        assert appointment.end == _at(11, 30)

    def test_confirmed_status_is_kept(self):
        appointment = asyncio.run(
            _guard().try_create_appointment(
                "salon", (_at(11), _at(12)), CUSTOMER, status=AppointmentStatus.CONFIRMED
            )
        )

        assert appointment.status is AppointmentStatus.CONFIRMED

    def test_appointment_conflict(self):
        """10:00-10:30 collides with the confirmed 10:00-11:00 appointment."""
        store = _store()

        with pytest.raises(AppointmentConflictError) as exc_info:
            asyncio.run(_guard(store).try_create_appointment("salon", (_at(10), _at(10, 30)), CUSTOMER))

        assert exc_info.value.kind == "appointment"
        assert exc_info.value.business_id == "salon"
        assert [a.id for a in exc_info.value.conflicts] == ["apt-1"]
        assert len(store._appointments) == 1

    def test_blocked_conflict(self):
        store = _store()

        with pytest.raises(BlockedConflictError) as exc_info:
            asyncio.run(_guard(store).try_create_appointment("salon", (_at(15, 30), _at(16, 30)), CUSTOMER))

        assert exc_info.value.kind == "blocked"
        assert len(store._appointments) == 1

    def test_appointment_conflict_wins_over_block(self):
        store = _store()
        store.seed_blocked_slot(
            BlockedSlot(id="block-2", business_id="salon", start=_at(10, 30), end=_at(11, 30))
        )

        with pytest.raises(AppointmentConflictError):
            asyncio.run(_guard(store).try_create_appointment("salon", (_at(10, 30), _at(11, 30)), CUSTOMER))

    @pytest.mark.parametrize(
        "status",
        [AppointmentStatus.CANCELLED, AppointmentStatus.NO_SHOW],
    )
    def test_inert_appointments_do_not_conflict(self, status):
        store = _store()
        store.seed_appointment(
            Appointment(
                id="apt-2",
                business_id="salon",
                start=_at(13),
                end=_at(14),
                status=status,
                cancelled_at=NOW if status == AppointmentStatus.CANCELLED else None,
            )
        )

        appointment = asyncio.run(_guard(store).try_create_appointment("salon", (_at(13), _at(14)), CUSTOMER))

        assert appointment.start == _at(13)

    def test_completed_appointment_still_occupies_time(self):
        store = _store()
        store.seed_appointment(
            Appointment(
                id="apt-2",
                business_id="salon",
                start=_at(13),
                end=_at(14),
                status=AppointmentStatus.COMPLETED,
            )
        )

        with pytest.raises(AppointmentConflictError):
            asyncio.run(_guard(store).try_create_appointment("salon", (_at(13), _at(14)), CUSTOMER))

    def test_other_business_is_not_affected(self):
        appointment = asyncio.run(
            _guard().try_create_appointment("barber", (_at(10), _at(11)), CUSTOMER)
        )

        assert appointment.business_id == "barber"

    def test_unknown_business(self):
        with pytest.raises(BusinessNotFoundError):
            asyncio.run(_guard().try_create_appointment("florist", (_at(11), _at(12)), CUSTOMER))

    @pytest.mark.parametrize(
        "proposed, customer, status",
        [
            ((_at(12), _at(11)), CUSTOMER, None),
            ((_at(11), _at(11)), CUSTOMER, None),
            ((_at(7), _at(9)), CUSTOMER, None),
            ((_at(11), _at(11, 0).add(seconds=30)), CUSTOMER, None),
            ((_at(11), _at(11, day=26).add(minutes=1)), CUSTOMER, None),
            ((_at(11), _at(12)), {"name": "Max", "email": "nope"}, None),
            ((_at(11), _at(12)), CUSTOMER, AppointmentStatus.CANCELLED),
            ((_at(11), _at(12)), CUSTOMER, "archived"),
        ],
    )
    def test_invalid_proposals_are_rejected_without_writing(self, proposed, customer, status):
        store = _store()

        with pytest.raises(ValidationError):
            asyncio.run(
                _guard(store).try_create_appointment("salon", proposed, customer, status=status)
            )

        assert len(store._appointments) == 1

    def test_start_within_clock_skew_is_accepted(self):
        appointment = asyncio.run(
            _guard().try_create_appointment(
                "salon", (NOW.subtract(seconds=30), NOW.add(minutes=30)), CUSTOMER
            )
        )

        assert appointment.start == NOW.subtract(seconds=30)

    def test_explicit_now_overrides_clock(self):
        with pytest.raises(ValidationError, match="past"):
            asyncio.run(
                _guard().try_create_appointment("salon", (_at(11), _at(12)), CUSTOMER, now=_at(13))
            )


class TestConcurrentBookings:
    """The check and the insert must behave as one unit per business."""

    def test_overlapping_proposals_yield_one_appointment(self):
        store = _store(SlowWriteStore)
        guard = _guard(store)

        async def scenario():
            return await asyncio.gather(
                guard.try_create_appointment("salon", (_at(13), _at(14)), CUSTOMER),
                guard.try_create_appointment("salon", (_at(13, 30), _at(14, 30)), CUSTOMER),
                guard.try_create_appointment("salon", (_at(13), _at(14)), CUSTOMER),
                return_exceptions=True,
            )

        results = asyncio.run(scenario())

        created = [r for r in results if isinstance(r, Appointment)]
        rejected = [r for r in results if isinstance(r, AppointmentConflictError)]
        assert len(created) == 1
        assert len(rejected) == 2
        assert len(store._appointments) == 2

    def test_different_businesses_do_not_block_each_other(self):
        store = _store(SlowWriteStore)
        guard = _guard(store)

        async def scenario():
            return await asyncio.gather(
                guard.try_create_appointment("salon", (_at(13), _at(14)), CUSTOMER),
                guard.try_create_appointment("barber", (_at(13), _at(14)), CUSTOMER),
            )

        salon, barber = asyncio.run(scenario())

        assert salon.business_id == "salon"
        assert barber.business_id == "barber"
        assert salon.booking_token != barber.booking_token

    def test_adjacent_proposals_both_succeed(self):
        store = _store(SlowWriteStore)
        guard = _guard(store)

        async def scenario():
            return await asyncio.gather(
                guard.try_create_appointment("salon", (_at(13), _at(14)), CUSTOMER),
                guard.try_create_appointment("salon", (_at(14), _at(15)), CUSTOMER),
            )

        first, second = asyncio.run(scenario())

        assert first.end == second.start

    def test_store_is_reusable_across_event_loops(self):
        """Each asyncio.run gets a fresh loop; contention must still end in a conflict."""
        store = _store(SlowWriteStore)
        guard = _guard(store)

        def contend(start_hour):
            async def scenario():
                return await asyncio.gather(
                    guard.try_create_appointment("salon", (_at(start_hour), _at(start_hour + 1)), CUSTOMER),
                    guard.try_create_appointment(
                        "salon", (_at(start_hour, 30), _at(start_hour + 1, 30)), CUSTOMER
                    ),
                    return_exceptions=True,
                )

            return asyncio.run(scenario())

        for start_hour in (11, 13):
            results = contend(start_hour)

            assert [type(r) for r in results] == [Appointment, AppointmentConflictError]

        assert len(store._appointments) == 3

    def test_store_shared_between_threads(self):
        """Two threads booking the same interval: one wins, one is told it conflicts."""
        store = _store(SlowWriteStore)
        guard = _guard(store)
        barrier = threading.Barrier(2)

        def book():
            barrier.wait(timeout=5)
            try:
                return asyncio.run(guard.try_create_appointment("salon", (_at(13), _at(14)), CUSTOMER))
            except AppointmentConflictError as exc:
                return exc

        with ThreadPoolExecutor(max_workers=2) as executor:
            futures = [executor.submit(book) for _ in range(2)]
            results = [future.result(timeout=10) for future in futures]

        assert sorted(type(r).__name__ for r in results) == ["Appointment", "AppointmentConflictError"]
        assert len(store._appointments) == 2

    def test_status_changes_from_several_threads(self):
        """Re-activation and a new booking race for the same interval; only one may hold it."""
        store = _store(SlowWriteStore)
        guard = _guard(store)
        asyncio.run(guard.change_status("apt-1", AppointmentStatus.CANCELLED))
        barrier = threading.Barrier(2)

        def reactivate():
            barrier.wait(timeout=5)
            return asyncio.run(guard.change_status("apt-1", AppointmentStatus.CONFIRMED))

        def book():
            barrier.wait(timeout=5)
            return asyncio.run(guard.try_create_appointment("salon", (_at(10), _at(11)), CUSTOMER))

        with ThreadPoolExecutor(max_workers=2) as executor:
            futures = [executor.submit(reactivate), executor.submit(book)]
            outcomes = []
            for future in futures:
                try:
                    outcomes.append(future.result(timeout=10))
                except AppointmentConflictError as exc:
                    outcomes.append(exc)

        assert sum(isinstance(o, AppointmentConflictError) for o in outcomes) == 1
        occupying = [a for a in store._appointments.values() if a.occupies_time]
        assert len(occupying) == 1


class TestBookingTokens:
    """Tests for booking token generation and lookup."""

    def test_token_collision_is_retried(self):
        tokens = iter(["a" * 32, "a" * 32, "b" * 32, "c" * 32])
        store = _store(token_factory=lambda: next(tokens))
        guard = _guard(store)

        async def scenario():
            first = await guard.try_create_appointment("salon", (_at(11), _at(12)), CUSTOMER)
            second = await guard.try_create_appointment("salon", (_at(13), _at(14)), CUSTOMER)
            return first, second

        first, second = asyncio.run(scenario())

        # apt-1 was seeded with the first token
        assert first.booking_token == "b" * 32
        assert second.booking_token == "c" * 32

    def test_find_by_token(self):
        store = _store()
        guard = _guard(store)
        created = asyncio.run(guard.try_create_appointment("salon", (_at(11), _at(12)), CUSTOMER))

        found = asyncio.run(guard.find_by_token(created.booking_token))

        assert found == created

    def test_unknown_token(self):
        with pytest.raises(AppointmentNotFoundError):
            asyncio.run(_guard().find_by_token("0" * 32))

    def test_tokens_are_unique(self):
        store = _store()
        guard = _guard(store)

        async def scenario():
            return [
                await guard.try_create_appointment("barber", (_at(h), _at(h + 1)), CUSTOMER)
                for h in range(9, 17)
            ]

        created = asyncio.run(scenario())

        assert len({a.booking_token for a in created}) == len(created)


class TestStatusChanges:
    """Tests for status transitions and the cancellation timestamp."""

    def test_cancel_sets_timestamp(self):
        guard = _guard()

        cancelled = asyncio.run(guard.change_status("apt-1", "cancelled", now=_at(9)))

        assert cancelled.status is AppointmentStatus.CANCELLED
        assert cancelled.cancelled_at == _at(9)
        assert cancelled.updated_at == _at(9)

    def test_uncancel_clears_timestamp(self):
        guard = _guard()

        async def scenario():
            await guard.change_status("apt-1", AppointmentStatus.CANCELLED, now=_at(9))
            return await guard.change_status("apt-1", AppointmentStatus.CONFIRMED, now=_at(9, 5))

        restored = asyncio.run(scenario())

        assert restored.status is AppointmentStatus.CONFIRMED
        assert restored.cancelled_at is None

    def test_cancel_frees_the_interval(self):
        guard = _guard()

        async def scenario():
            await guard.change_status("apt-1", AppointmentStatus.CANCELLED)
            return await guard.try_create_appointment("salon", (_at(10), _at(11)), CUSTOMER)

        appointment = asyncio.run(scenario())

        assert appointment.start == _at(10)

    def test_reactivation_is_conflict_checked(self):
        store = _store()
        guard = _guard(store)

        async def scenario():
            await guard.change_status("apt-1", AppointmentStatus.CANCELLED)
            await guard.try_create_appointment("salon", (_at(10), _at(11)), CUSTOMER)
            await guard.change_status("apt-1", AppointmentStatus.CONFIRMED)

        with pytest.raises(AppointmentConflictError):
            asyncio.run(scenario())

        stored = asyncio.run(store.get_appointment("apt-1"))
        assert stored.status is AppointmentStatus.CANCELLED
        assert stored.cancelled_at is not None

    def test_completing_does_not_recheck(self):
        guard = _guard()

        completed = asyncio.run(guard.change_status("apt-1", AppointmentStatus.COMPLETED))

        assert completed.status is AppointmentStatus.COMPLETED
        assert completed.cancelled_at is None

    def test_unknown_status(self):
        with pytest.raises(ValidationError):
            asyncio.run(_guard().change_status("apt-1", "archived"))

    def test_unknown_appointment(self):
        with pytest.raises(AppointmentNotFoundError):
            asyncio.run(_guard().change_status("missing", AppointmentStatus.CANCELLED))

    def test_cancel_by_token(self):
        store = _store()
        guard = _guard(store)

        async def scenario():
            created = await guard.try_create_appointment("salon", (_at(11), _at(12)), CUSTOMER)
            cancelled = await guard.cancel_by_token(created.booking_token, now=_at(9))
            available = await guard.is_slot_available("salon", (_at(11), _at(12)))
            return created, cancelled, available

        created, cancelled, available = asyncio.run(scenario())

        assert cancelled.id == created.id
        assert cancelled.status is AppointmentStatus.CANCELLED
        assert cancelled.cancelled_at == _at(9)
        assert available

    def test_cancel_by_unknown_token(self):
        with pytest.raises(AppointmentNotFoundError):
            asyncio.run(_guard().cancel_by_token("f" * 32))


class TestReadHelpers:
    """Tests for the non-committing helpers."""

    def test_is_slot_available(self):
        guard = _guard()

        assert asyncio.run(guard.is_slot_available("salon", (_at(11), _at(12))))
        assert not asyncio.run(guard.is_slot_available("salon", (_at(10, 30), _at(11, 30))))
        assert not asyncio.run(guard.is_slot_available("salon", TimeRange(start=_at(15), end=_at(15, 15))))

    def test_list_active_appointments(self):
        store = _store()
        store.seed_appointment(
            Appointment(
                id="apt-0",
                business_id="salon",
                start=_at(9),
                end=_at(10),
                status=AppointmentStatus.PENDING,
            )
        )
        store.seed_appointment(
            Appointment(
                id="apt-x",
                business_id="salon",
                start=_at(11),
                end=_at(12),
                status=AppointmentStatus.CANCELLED,
                cancelled_at=NOW,
            )
        )

        active = asyncio.run(_guard(store).list_active_appointments("salon", _at(0), _at(0, day=26)))

        assert [a.id for a in active] == ["apt-0", "apt-1"]

    def test_sequential_ids_from_factory(self):
        ids = count(1)
        store = _store(id_factory=lambda: f"apt-new-{next(ids)}")

        appointment = asyncio.run(
            _guard(store).try_create_appointment("salon", (_at(11), _at(12)), CUSTOMER)
        )

        assert appointment.id == "apt-new-1"


class TestBlockedSlots:
    """Blocks managed through the store take effect for the guard immediately."""

    def test_add_and_remove_blocked_slot(self):
        store = _store()
        guard = _guard(store)
        block = BlockedSlot(id="block-2", business_id="salon", start=_at(13), end=_at(14))

        async def scenario():
            await store.add_blocked_slot(block)
            blocked = await guard.is_slot_available("salon", (_at(13), _at(14)))
            await store.remove_blocked_slot("block-2")
            freed = await guard.is_slot_available("salon", (_at(13), _at(14)))
            return blocked, freed

        blocked, freed = asyncio.run(scenario())

        assert not blocked
        assert freed

    def test_block_for_unknown_business(self):
        store = _store()
        block = BlockedSlot(id="block-2", business_id="florist", start=_at(13), end=_at(14))

        with pytest.raises(BusinessNotFoundError):
            asyncio.run(store.add_blocked_slot(block))


class TestSeeding:
    """Seeded appointments obey the same overlap rule as booked ones."""

    def test_overlapping_seed_is_rejected(self):
        store = _store()

        with pytest.raises(AppointmentConflictError):
            store.seed_appointment(
                Appointment(id="apt-2", business_id="salon", start=_at(10, 30), end=_at(11, 30))
            )

        assert "apt-2" not in store._appointments

    def test_cancelled_seed_may_overlap(self):
        store = _store()

        seeded = store.seed_appointment(
            Appointment(
                id="apt-2",
                business_id="salon",
                start=_at(10, 30),
                end=_at(11, 30),
                status=AppointmentStatus.CANCELLED,
                cancelled_at=NOW,
            )
        )

        assert store._appointments["apt-2"] == seeded

    def test_seed_overlapping_other_business_is_fine(self):
        store = _store()

        store.seed_appointment(
            Appointment(id="apt-2", business_id="barber", start=_at(10), end=_at(11))
        )

        assert len(store._appointments) == 2


class TestCustomerDetails:
    """Tests for customer detail updates and per-customer listing."""

    def test_update_merges_and_validates(self):
        store = _store()
        guard = _guard(store)

        async def scenario():
            created = await guard.try_create_appointment("salon", (_at(11), _at(12)), CUSTOMER)
            updated = await guard.update_customer_details(
                created.id, now=_at(9), email="New@Example.com", notes="Window seat"
            )
            return created, updated

        created, updated = asyncio.run(scenario())

        assert updated.customer.email == "new@example.com"
        assert updated.customer.notes == "Window seat"
        assert updated.customer.name == "Max Mustermann"
        assert updated.updated_at == _at(9)
        assert (updated.start, updated.end, updated.status) == (created.start, created.end, created.status)
        assert updated.booking_token == created.booking_token

    def test_at_least_one_field_is_required(self):
        with pytest.raises(ValidationError, match="At least one field"):
            asyncio.run(_guard().update_customer_details("apt-1"))

    def test_unknown_field_is_rejected(self):
        with pytest.raises(ValidationError, match="start"):
            asyncio.run(_guard().update_customer_details("apt-1", start=_at(12)))

    def test_invalid_value_leaves_record_unchanged(self):
        store = _store()
        guard = _guard(store)
        created = asyncio.run(guard.try_create_appointment("salon", (_at(11), _at(12)), CUSTOMER))

        with pytest.raises(ValidationError):
            asyncio.run(guard.update_customer_details(created.id, email="nope"))

        assert asyncio.run(store.get_appointment(created.id)) == created

    def test_unknown_appointment(self):
        with pytest.raises(AppointmentNotFoundError):
            asyncio.run(_guard().update_customer_details("missing", name="Max"))

    def test_list_appointments_by_customer(self):
        store = _store()
        guard = _guard(store)
        registered = {**CUSTOMER, "customer_id": "user-7"}

        async def scenario():
            early = await guard.try_create_appointment("salon", (_at(11), _at(12)), registered)
            late = await guard.try_create_appointment("barber", (_at(14), _at(15)), registered)
            await guard.try_create_appointment("salon", (_at(13), _at(14)), CUSTOMER)
            listed = await guard.list_appointments_by_customer("user-7")
            return early, late, listed

        early, late, listed = asyncio.run(scenario())

        assert [a.id for a in listed] == [late.id, early.id]
        assert asyncio.run(guard.list_appointments_by_customer("user-8")) == []
