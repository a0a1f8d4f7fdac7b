from datetime import timedelta, timezone

import pytest
from sqlmodel_history.core.hooks import MutationHooks, apply_update
from sqlmodel_history.exceptions import ConfigurationError, NotFoundError
from sqlmodel_history.history.tracker import track_history

pytestmark = pytest.mark.asyncio


async def test_status_history_example(async_session, hooks, ticket_tracker, ticket_model, acting_as):
    ticket = ticket_model(id=7, status="open", title="Printer on fire")
    async_session.add(ticket)
    await async_session.commit()

    acting_as("alice")
    await apply_update(async_session, ticket, {"status": "closed"}, hooks)
    acting_as("bob")
    await apply_update(async_session, ticket, {"status": "reopened"}, hooks)

    first, second = await ticket_tracker.list_revisions(async_session, 7)

    assert (first.source_id, first.revision, first.status, first.changed_fields, first.actor) == (
        7,
        1,
        "open",
        ["status"],
        "alice",
    )
    assert (second.source_id, second.revision, second.status, second.changed_fields, second.actor) == (
        7,
        2,
        "closed",
        ["status"],
        "bob",
    )


async def test_tracker_is_registered_on_hooks(hooks, ticket_tracker, ticket_model):
    listeners = hooks.listeners(ticket_model)
    assert listeners[ticket_tracker.hook_name] == ticket_tracker.writer.write
    assert ticket_tracker.history_model.history_tracker is ticket_tracker


async def test_get_revision_not_found(async_session, ticket_tracker, ticket):
    with pytest.raises(NotFoundError, match="revision 3"):
        await ticket_tracker.get_revision(async_session, ticket.id, 3)


async def test_list_revisions_of_untouched_record_is_empty(async_session, ticket_tracker, ticket):
    assert await ticket_tracker.list_revisions(async_session, ticket.id) == []


async def test_untrack_stops_recording(async_session, hooks, ticket_tracker, ticket_model, ticket):
    ticket_tracker.untrack()
    try:
        assert ticket_tracker.hook_name not in hooks.listeners(ticket_model)
        await apply_update(async_session, ticket, {"status": "closed"}, hooks)
        assert await ticket_tracker.list_revisions(async_session, ticket.id) == []
    finally:
        hooks.register(ticket_model, ticket_tracker.hook_name, ticket_tracker.writer.write)


async def test_invalid_options_register_nothing(note_model):
    local_hooks = MutationHooks()
    with pytest.raises(ConfigurationError):
        track_history(note_model, ["title"], hooks=local_hooks)
    assert dict(local_hooks.listeners(note_model)) == {}


async def test_updates_of_other_models_are_not_recorded(async_session, hooks, ticket_tracker, note_model):
    note = note_model(body="call vendor")
    async_session.add(note)
    await async_session.commit()

    await apply_update(async_session, note, {"pinned": True}, hooks)

    assert note.pinned is True
    assert await ticket_tracker.list_revisions(async_session, note.id) == []


async def test_list_revisions_filters_on_capture_time(async_session, hooks, ticket_tracker, ticket):
    await apply_update(async_session, ticket, {"status": "triaged"}, hooks)
    await apply_update(async_session, ticket, {"status": "closed"}, hooks)
    first, second = await ticket_tracker.list_revisions(async_session, ticket.id)

    # the same instant as the second capture, expressed in another timezone
    second_elsewhere = second.captured_at.replace(tzinfo=timezone.utc).astimezone(timezone(timedelta(hours=-5)))

    since = await ticket_tracker.list_revisions(async_session, ticket.id, since=second_elsewhere)
    until = await ticket_tracker.list_revisions(async_session, ticket.id, until=first.captured_at)

    assert [row.revision for row in since] == [2]
    assert [row.revision for row in until] == [1]
