from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from api.errors import (
    AccessDeniedError,
    InvalidTransitionError,
    NoAccessIssuedError,
    ValidationError,
)
from api.models.access_grant import AccessGrant
from api.services import access_service, invite_service

# Access grants
# Link and account channels move independently; revocation is terminal.


async def _counts(session_factory, invite_id):
    async with session_factory() as s:
        return await access_service.counts(s, invite_id)


async def _transition(session_factory, fn, invite_id, channel):
    async with session_factory() as s:
        changed = await fn(s, invite_id, channel)
        await s.commit()
        return changed


async def _verify(session_factory, token, **kwargs):
    async with session_factory() as s:
        access = await access_service.verify(s, token, **kwargs)
        await s.commit()
        return access


async def _link_account(session_factory, invite_id, user_id):
    async with session_factory() as s:
        grant = await access_service.link_account_grant(s, invite_id, user_id)
        await s.commit()
        return grant


@pytest.mark.asyncio
async def test_new_invite_has_one_active_link(session_factory, make_invite):
    invite = await make_invite()
    counts = await _counts(session_factory, invite.id)
    assert counts.active_access_count == 1
    assert counts.access_total == 1
    assert counts.linked_account_count == 0


@pytest.mark.asyncio
async def test_only_the_hash_is_stored(session_factory, make_invite):
    invite = await make_invite()
    async with session_factory() as s:
        grant = (
            await s.execute(select(AccessGrant).where(AccessGrant.bid_invite_id == invite.id))
        ).scalar_one()
    assert grant.token_hash == access_service.hash_token(invite.token)
    assert grant.token_hash != invite.token


@pytest.mark.asyncio
async def test_pausing_links_leaves_accounts_active(session_factory, seeded, make_invite):
    invite = await make_invite()
    await _link_account(session_factory, invite.id, seeded.vendor_user_id)

    changed = await _transition(session_factory, access_service.pause_channel, invite.id, "link")

    assert changed == 1
    counts = await _counts(session_factory, invite.id)
    assert counts.active_access_count == 0
    assert counts.paused_access_count == 1
    assert counts.linked_active_account_count == 1
    assert counts.linked_paused_account_count == 0


@pytest.mark.asyncio
async def test_pause_and_resume_are_idempotent(session_factory, make_invite):
    invite = await make_invite()

    assert await _transition(session_factory, access_service.pause_channel, invite.id, "link") == 1
    assert await _transition(session_factory, access_service.pause_channel, invite.id, "link") == 0
    assert await _transition(session_factory, access_service.resume_channel, invite.id, "link") == 1
    assert await _transition(session_factory, access_service.resume_channel, invite.id, "link") == 0

    counts = await _counts(session_factory, invite.id)
    assert counts.active_access_count == 1


@pytest.mark.asyncio
async def test_revoke_is_terminal(session_factory, make_invite):
    invite = await make_invite()
    await _transition(session_factory, access_service.pause_channel, invite.id, "link")

    assert await _transition(session_factory, access_service.revoke_channel, invite.id, "link") == 1
    assert await _transition(session_factory, access_service.resume_channel, invite.id, "link") == 0

    counts = await _counts(session_factory, invite.id)
    assert counts.active_access_count == 0
    assert counts.paused_access_count == 0
    # revoked links still count toward the total ever issued
    assert counts.access_total == 1

    with pytest.raises(AccessDeniedError) as exc_info:
        await _verify(session_factory, invite.token)
    assert exc_info.value.reason == "revoked"


@pytest.mark.asyncio
async def test_access_total_includes_every_issued_link(session_factory, make_invite):
    invite = await make_invite()
    await _transition(session_factory, access_service.revoke_channel, invite.id, "link")
    async with session_factory() as s:
        await access_service.issue_link_grant(s, invite.id)
        await s.commit()

    counts = await _counts(session_factory, invite.id)
    assert counts.access_total == 2
    assert counts.active_access_count == 1


@pytest.mark.asyncio
async def test_issuing_a_link_keeps_earlier_links(session_factory, make_invite):
    invite = await make_invite()
    async with session_factory() as s:
        second = await access_service.issue_link_grant(s, invite.id)
        await s.commit()

    assert (await _verify(session_factory, invite.token)).invite.id == invite.id
    assert (await _verify(session_factory, second.token)).invite.id == invite.id
    assert second.url.endswith(f"/b/{second.token}")


@pytest.mark.asyncio
async def test_issuing_a_link_sends_a_draft_invite(session_factory, make_invite):
    invite = await make_invite(status="draft")
    async with session_factory() as s:
        await access_service.issue_link_grant(s, invite.id)
        await s.commit()

    async with session_factory() as s:
        refreshed = await invite_service.get_invite(s, invite.id)
        assert refreshed.status == "sent"
        assert refreshed.sent_at is not None


@pytest.mark.asyncio
async def test_paused_link_is_refused(session_factory, make_invite):
    invite = await make_invite()
    await _transition(session_factory, access_service.pause_channel, invite.id, "link")

    with pytest.raises(AccessDeniedError) as exc_info:
        await _verify(session_factory, invite.token)
    assert exc_info.value.reason == "paused"
    assert exc_info.value.status_code == 403


@pytest.mark.asyncio
async def test_unknown_token_is_not_found(session_factory, make_invite):
    await make_invite()
    with pytest.raises(AccessDeniedError) as exc_info:
        await _verify(session_factory, access_service.generate_token())
    assert exc_info.value.reason == "not_found"


@pytest.mark.asyncio
async def test_expired_link_is_not_found(session_factory, make_invite):
    invite = await make_invite()
    async with session_factory() as s:
        issued = await access_service.issue_link_grant(
            s, invite.id, expires_at=datetime.now(timezone.utc) - timedelta(hours=1)
        )
        await s.commit()

    with pytest.raises(AccessDeniedError) as exc_info:
        await _verify(session_factory, issued.token)
    assert exc_info.value.reason == "not_found"


@pytest.mark.asyncio
async def test_exhausted_link_is_not_found(session_factory, make_invite):
    invite = await make_invite()
    async with session_factory() as s:
        issued = await access_service.issue_link_grant(s, invite.id, max_access_count=2)
        await s.commit()

    await _verify(session_factory, issued.token, record_access=True)
    await _verify(session_factory, issued.token, record_access=True)
    with pytest.raises(AccessDeniedError) as exc_info:
        await _verify(session_factory, issued.token, record_access=True)
    assert exc_info.value.reason == "not_found"


@pytest.mark.asyncio
async def test_linked_account_gets_through_paused_links(session_factory, seeded, make_invite):
    invite = await make_invite()
    await _link_account(session_factory, invite.id, seeded.vendor_user_id)
    await _transition(session_factory, access_service.pause_channel, invite.id, "link")

    access = await _verify(session_factory, invite.token, user_id=str(seeded.vendor_user_id))
    assert access.channel == "account"

    # the bare link stays blocked
    with pytest.raises(AccessDeniedError):
        await _verify(session_factory, invite.token)


@pytest.mark.asyncio
async def test_paused_account_is_refused_even_with_active_link(session_factory, seeded, make_invite):
    invite = await make_invite()
    await _link_account(session_factory, invite.id, seeded.vendor_user_id)
    await _transition(session_factory, access_service.pause_channel, invite.id, "account")

    with pytest.raises(AccessDeniedError) as exc_info:
        await _verify(session_factory, invite.token, user_id=str(seeded.vendor_user_id))
    assert exc_info.value.reason == "paused"

    # anonymous link use is unaffected
    assert (await _verify(session_factory, invite.token)).channel == "link"


@pytest.mark.asyncio
async def test_link_account_is_idempotent(session_factory, seeded, make_invite):
    invite = await make_invite()
    first = await _link_account(session_factory, invite.id, seeded.vendor_user_id)
    second = await _link_account(session_factory, invite.id, seeded.vendor_user_id)

    assert first.id == second.id
    counts = await _counts(session_factory, invite.id)
    assert counts.linked_account_count == 1


@pytest.mark.asyncio
async def test_require_account_blocks_bare_links(session_factory, seeded, make_invite):
    invite = await make_invite()
    async with session_factory() as s:
        await invite_service.set_require_account(s, invite.id, True)
        await s.commit()

    with pytest.raises(AccessDeniedError) as exc_info:
        await _verify(session_factory, invite.token)
    assert exc_info.value.reason == "account_required"

    # linking still works off the link, and the account then gets in
    await _verify(session_factory, invite.token, enforce_account=False)
    await _link_account(session_factory, invite.id, seeded.vendor_user_id)
    access = await _verify(session_factory, invite.token, user_id=str(seeded.vendor_user_id))
    assert access.channel == "account"


@pytest.mark.asyncio
async def test_require_account_needs_issued_access(session_factory, make_invite):
    invite = await make_invite()
    await _transition(session_factory, access_service.revoke_channel, invite.id, "link")

    async with session_factory() as s:
        with pytest.raises(NoAccessIssuedError):
            await invite_service.set_require_account(s, invite.id, True)


@pytest.mark.asyncio
async def test_counts_for_invites_covers_every_id(session_factory, make_invite):
    first = await make_invite()
    second = await make_invite()
    await _transition(session_factory, access_service.pause_channel, second.id, "link")

    async with session_factory() as s:
        counts = await access_service.counts_for_invites(s, [first.id, second.id])

    assert counts[str(first.id)].active_access_count == 1
    assert counts[str(second.id)].paused_access_count == 1


# Link PINs


async def _link_grant(session_factory, invite_id) -> AccessGrant:
    async with session_factory() as s:
        return (
            await s.execute(
                select(AccessGrant).where(
                    AccessGrant.bid_invite_id == invite_id, AccessGrant.channel == "link"
                )
            )
        ).scalar_one()


async def _set_pin(session_factory, invite_id, pin):
    grant = await _link_grant(session_factory, invite_id)
    async with session_factory() as s:
        grant = await access_service.set_link_pin(s, invite_id, grant.id, pin)
        await s.commit()
        return grant


async def _check_pin(session_factory, token, pin):
    async with session_factory() as s:
        check = await access_service.verify_pin(s, token, pin)
        await s.commit()
        return check


@pytest.mark.asyncio
async def test_pin_link_needs_pin_session(session_factory, make_invite):
    invite = await make_invite()
    grant = await _set_pin(session_factory, invite.id, "4821")
    assert grant.pin_required is True
    assert grant.pin_hash != "4821"

    with pytest.raises(AccessDeniedError) as exc_info:
        await _verify(session_factory, invite.token)
    assert exc_info.value.reason == "pin_required"

    check = await _check_pin(session_factory, invite.token, "4821")
    assert check.valid is True
    access = await _verify(session_factory, invite.token, pin_session=check.pin_session)
    assert access.channel == "link"


@pytest.mark.asyncio
async def test_wrong_pins_lock_the_link(session_factory, make_invite):
    invite = await make_invite()
    await _set_pin(session_factory, invite.id, "4821")

    remaining = []
    for _ in range(5):
        check = await _check_pin(session_factory, invite.token, "0000")
        assert check.valid is False
        remaining.append(check.attempts_remaining)
    assert remaining == [4, 3, 2, 1, 0]
    assert check.locked_until is not None

    # the right PIN is not even compared while locked
    locked = await _check_pin(session_factory, invite.token, "4821")
    assert locked.valid is False
    assert locked.locked_until == check.locked_until
    assert (await _link_grant(session_factory, invite.id)).pin_attempts == 5

    grant_id = (await _link_grant(session_factory, invite.id)).id
    async with session_factory() as s:
        grant = await s.get(AccessGrant, grant_id)
        grant.pin_locked_until = datetime.now(timezone.utc).replace(tzinfo=None) - timedelta(minutes=1)
        await s.commit()

    unlocked = await _check_pin(session_factory, invite.token, "4821")
    assert unlocked.valid is True
    grant = await _link_grant(session_factory, invite.id)
    assert grant.pin_attempts == 0
    assert grant.pin_locked_until is None


@pytest.mark.asyncio
async def test_correct_pin_resets_attempts(session_factory, make_invite):
    invite = await make_invite()
    await _set_pin(session_factory, invite.id, "93017")

    await _check_pin(session_factory, invite.token, "11111")
    await _check_pin(session_factory, invite.token, "22222")
    assert (await _link_grant(session_factory, invite.id)).pin_attempts == 2

    assert (await _check_pin(session_factory, invite.token, "93017")).valid is True
    assert (await _link_grant(session_factory, invite.id)).pin_attempts == 0

    miss = await _check_pin(session_factory, invite.token, "33333")
    assert miss.attempts_remaining == 4
    assert miss.locked_until is None


@pytest.mark.asyncio
async def test_changing_pin_ends_old_sessions(session_factory, make_invite):
    invite = await make_invite()
    await _set_pin(session_factory, invite.id, "4821")
    old = await _check_pin(session_factory, invite.token, "4821")

    await _set_pin(session_factory, invite.id, "7310")

    with pytest.raises(AccessDeniedError) as exc_info:
        await _verify(session_factory, invite.token, pin_session=old.pin_session)
    assert exc_info.value.reason == "pin_required"
    assert (await _check_pin(session_factory, invite.token, "4821")).valid is False


@pytest.mark.asyncio
async def test_clearing_pin_opens_link(session_factory, make_invite):
    invite = await make_invite()
    grant = await _set_pin(session_factory, invite.id, "4821")

    async with session_factory() as s:
        cleared = await access_service.clear_link_pin(s, invite.id, grant.id)
        await s.commit()
    assert cleared.pin_required is False
    assert cleared.pin_hash is None

    access = await _verify(session_factory, invite.token)
    assert access.channel == "link"
    with pytest.raises(ValidationError):
        await _check_pin(session_factory, invite.token, "4821")


@pytest.mark.asyncio
async def test_pin_rules(session_factory, make_invite):
    invite = await make_invite()
    grant = await _link_grant(session_factory, invite.id)

    async with session_factory() as s:
        with pytest.raises(ValidationError):
            await access_service.set_link_pin(s, invite.id, grant.id, "12ab")

    await _transition(session_factory, access_service.revoke_channel, invite.id, "link")
    async with session_factory() as s:
        with pytest.raises(InvalidTransitionError):
            await access_service.set_link_pin(s, invite.id, grant.id, "4821")
    with pytest.raises(AccessDeniedError) as exc_info:
        await _check_pin(session_factory, invite.token, "4821")
    assert exc_info.value.reason == "not_found"


@pytest.mark.asyncio
async def test_account_holder_skips_link_pin(session_factory, seeded, make_invite):
    invite = await make_invite()
    await _set_pin(session_factory, invite.id, "4821")
    await _link_account(session_factory, invite.id, seeded.vendor_user_id)

    access = await _verify(session_factory, invite.token, user_id=seeded.vendor_user_id)
    assert access.channel == "account"
