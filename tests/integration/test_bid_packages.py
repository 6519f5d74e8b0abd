import asyncio
import uuid
from datetime import datetime, timedelta, timezone

import pytest

from api.errors import InvalidTransitionError, NotFoundError, ValidationError
from api.models.bid_package import BidPackage
from api.services import attachment_service, bid_package_service, invite_service

# Bid packages
# Lifecycle edits, gap-free addendum numbering, acknowledgements, attachments.


async def _issue(session_factory, package_id, title, notify=False):
    async with session_factory() as s:
        result = await bid_package_service.issue_addendum(s, package_id, title=title, notify=notify)
        await s.commit()
        return result


async def _update(session_factory, package_id, changes):
    async with session_factory() as s:
        package = await bid_package_service.update_package(s, package_id, changes)
        await s.commit()
        return package


@pytest.mark.asyncio
async def test_create_package_starts_as_draft(session_factory, seeded):
    due = datetime(2026, 11, 3, 17, 0, tzinfo=timezone(timedelta(hours=-5)))
    async with session_factory() as s:
        package = await bid_package_service.create_package(
            s, seeded.tenant_id, uuid.uuid4(), "  Concrete footings  ", trade="concrete", due_at=due
        )
        await s.commit()

    assert package.status == "draft"
    assert package.title == "Concrete footings"
    # stored as naive UTC
    assert package.due_at == datetime(2026, 11, 3, 22, 0)


@pytest.mark.asyncio
async def test_create_package_requires_title(session_factory, seeded):
    async with session_factory() as s:
        with pytest.raises(ValidationError):
            await bid_package_service.create_package(s, seeded.tenant_id, uuid.uuid4(), "   ")


@pytest.mark.asyncio
async def test_status_follows_allowed_transitions(session_factory, seeded):
    package = await _update(session_factory, seeded.package_id, {"status": "closed"})
    assert package.status == "closed"
    package = await _update(session_factory, seeded.package_id, {"status": "open"})
    assert package.status == "open"

    with pytest.raises(InvalidTransitionError):
        await _update(session_factory, seeded.package_id, {"status": "draft"})


@pytest.mark.asyncio
async def test_award_status_is_not_settable_by_edit(session_factory, seeded):
    with pytest.raises(InvalidTransitionError):
        await _update(session_factory, seeded.package_id, {"status": "awarded"})


@pytest.mark.asyncio
async def test_awarded_package_cannot_be_edited(session_factory, seeded):
    async with session_factory() as s:
        (await s.get(BidPackage, seeded.package_id)).status = "awarded"
        await s.commit()

    with pytest.raises(InvalidTransitionError):
        await _update(session_factory, seeded.package_id, {"scope": "Add level 3"})


@pytest.mark.asyncio
async def test_unknown_field_is_rejected(session_factory, seeded):
    with pytest.raises(ValidationError):
        await _update(session_factory, seeded.package_id, {"tenant_id": str(uuid.uuid4())})


@pytest.mark.asyncio
async def test_package_lookup_is_tenant_scoped(session_factory, seeded):
    async with session_factory() as s:
        with pytest.raises(NotFoundError):
            await bid_package_service.get_package(s, seeded.package_id, tenant_id=uuid.uuid4())


@pytest.mark.asyncio
async def test_list_packages_filters_and_counts(session_factory, seeded):
    async with session_factory() as s:
        for title in ("Roofing", "Glazing"):
            await bid_package_service.create_package(s, seeded.tenant_id, uuid.uuid4(), title)
        await s.commit()

    async with session_factory() as s:
        drafts, total = await bid_package_service.list_packages(s, seeded.tenant_id, status="draft")
        everything, all_total = await bid_package_service.list_packages(s, seeded.tenant_id, limit=2)

    assert total == 2
    assert {p.title for p in drafts} == {"Roofing", "Glazing"}
    assert all_total == 3
    assert len(everything) == 2


# ---------- addenda ----------


@pytest.mark.asyncio
async def test_addenda_number_sequentially(session_factory, seeded):
    first = await _issue(session_factory, seeded.package_id, "Revised drawings")
    second = await _issue(session_factory, seeded.package_id, "Pre-bid walk moved")
    assert (first.addendum.number, second.addendum.number) == (1, 2)


@pytest.mark.asyncio
async def test_concurrent_addenda_get_distinct_numbers(session_factory, seeded):
    results = await asyncio.gather(
        *[_issue(session_factory, seeded.package_id, f"Addendum {i}") for i in range(5)]
    )
    assert sorted(r.addendum.number for r in results) == [1, 2, 3, 4, 5]

    async with session_factory() as s:
        addenda = await bid_package_service.list_addenda(s, seeded.package_id)
    assert [a.number for a in addenda] == [1, 2, 3, 4, 5]


@pytest.mark.asyncio
async def test_addendum_needs_content(session_factory, seeded):
    async with session_factory() as s:
        with pytest.raises(ValidationError):
            await bid_package_service.issue_addendum(s, seeded.package_id)


@pytest.mark.asyncio
async def test_addendum_on_cancelled_package_is_rejected(session_factory, seeded):
    await _update(session_factory, seeded.package_id, {"status": "cancelled"})
    with pytest.raises(InvalidTransitionError):
        await _issue(session_factory, seeded.package_id, "Too late")


@pytest.mark.asyncio
async def test_addendum_notifies_engaged_invites(session_factory, seeded, make_invite, email_gateway):
    await make_invite(status="sent")
    await make_invite(status="viewed")
    await make_invite(status="draft")
    await make_invite(status="declined")

    calls = []

    def _send(to, subject, body):
        calls.append(to)
        return len(calls) == 1

    email_gateway.side_effect = _send
    result = await _issue(session_factory, seeded.package_id, "Revised panel schedule", notify=True)

    assert len(calls) == 2
    assert (result.notified, result.notify_failed) == (1, 1)


@pytest.mark.asyncio
async def test_acknowledgement_is_idempotent(session_factory, seeded, make_invite):
    invite = await make_invite()
    issued = await _issue(session_factory, seeded.package_id, "Revised drawings")

    ack_ids = []
    for _ in range(2):
        async with session_factory() as s:
            loaded = await invite_service.get_invite(s, invite.id)
            ack = await bid_package_service.acknowledge_addendum(s, loaded, issued.addendum.id)
            await s.commit()
            ack_ids.append(ack.id)

    assert ack_ids[0] == ack_ids[1]
    async with session_factory() as s:
        acked = await bid_package_service.acknowledged_addendum_ids(s, invite.id)
    assert acked == {str(issued.addendum.id)}


@pytest.mark.asyncio
async def test_acknowledging_another_packages_addendum_is_not_found(session_factory, seeded, make_invite):
    invite = await make_invite()
    async with session_factory() as s:
        other = await bid_package_service.create_package(s, seeded.tenant_id, uuid.uuid4(), "Plumbing")
        await s.commit()
    foreign = await _issue(session_factory, other.id, "Not yours")

    async with session_factory() as s:
        loaded = await invite_service.get_invite(s, invite.id)
        with pytest.raises(NotFoundError):
            await bid_package_service.acknowledge_addendum(s, loaded, foreign.addendum.id)


# ---------- attachments ----------


@pytest.mark.asyncio
async def test_attach_is_idempotent_and_detachable(session_factory, seeded):
    file_id = uuid.uuid4()
    async with session_factory() as s:
        first = await attachment_service.attach(s, seeded.tenant_id, "bid_package", seeded.package_id, file_id)
        again = await attachment_service.attach(s, seeded.tenant_id, "bid_package", seeded.package_id, file_id)
        await s.commit()
    assert first.id == again.id

    async with session_factory() as s:
        await attachment_service.detach(s, seeded.tenant_id, first.id)
        await s.commit()

    async with session_factory() as s:
        assert await attachment_service.list_links(s, seeded.tenant_id, "bid_package", seeded.package_id) == []


@pytest.mark.asyncio
async def test_attach_checks_entity_and_type(session_factory, seeded):
    async with session_factory() as s:
        with pytest.raises(ValidationError):
            await attachment_service.attach(s, seeded.tenant_id, "invoice", seeded.package_id, uuid.uuid4())
        with pytest.raises(NotFoundError):
            await attachment_service.attach(s, seeded.tenant_id, "bid_addendum", uuid.uuid4(), uuid.uuid4())
        with pytest.raises(NotFoundError):
            await attachment_service.attach(s, uuid.uuid4(), "bid_package", seeded.package_id, uuid.uuid4())
