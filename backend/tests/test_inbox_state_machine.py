import uuid

import pytest
from structlog.testing import capture_logs

from integrations.errors import InboxItemNotFoundError, InboxTransitionError
from integrations.inbox import IntegrationInbox
from integrations.types import InboxStatus


@pytest.fixture
async def inbox_env(session_factory, settings, add_integration):
    integration = await add_integration()
    return IntegrationInbox(session_factory, settings), integration.integration_id


async def _stage(inbox, integration_id, external_id="X1", **kwargs):
    return await inbox.log_ingestion(
        integration_id=integration_id,
        source="foody",
        raw_payload={"id": external_id},
        event="order.pull",
        external_id=external_id,
        **kwargs,
    )


@pytest.mark.asyncio
class TestInboxStateMachine:
    async def test_receipt_is_pending_with_generated_correlation_id(self, inbox_env):
        inbox, integration_id = inbox_env

        item = await _stage(inbox, integration_id)

        assert item.status == InboxStatus.PENDING.value
        assert item.retries_count == 0
        assert item.processed_at is None
        uuid.UUID(item.correlation_id)

    async def test_receipt_is_logged_with_event_and_correlation(self, inbox_env):
        inbox, integration_id = inbox_env

        with capture_logs() as logs:
            item = await _stage(inbox, integration_id, correlation_id="trace-7")

        received = [entry for entry in logs if entry["event"] == "inbox.item.received"]
        assert len(received) == 1
        assert received[0]["item_id"] == str(item.id)
        assert received[0]["inbox_event"] == "order.pull"
        assert received[0]["correlation_id"] == "trace-7"

    async def test_supplied_correlation_id_is_kept(self, inbox_env):
        inbox, integration_id = inbox_env

        item = await _stage(inbox, integration_id, correlation_id="trace-123")

        assert item.correlation_id == "trace-123"

    async def test_duplicates_are_separate_items(self, inbox_env):
        inbox, integration_id = inbox_env

        first = await _stage(inbox, integration_id)
        second = await _stage(inbox, integration_id)

        assert first.id != second.id
        assert len(await inbox.get_pending_items(integration_id)) == 2

    async def test_processed_is_terminal_and_keeps_retry_count(self, inbox_env):
        inbox, integration_id = inbox_env
        item = await _stage(inbox, integration_id)

        processed = await inbox.mark_processed(item.id, {"external_id": "X1"})

        assert processed.status == InboxStatus.PROCESSED.value
        assert processed.parsed_payload == {"external_id": "X1"}
        assert processed.processed_at is not None
        for transition in (inbox.mark_failed(item.id, "late"), inbox.mark_ignored(item.id)):
            with pytest.raises(InboxTransitionError):
                await transition
        assert (await inbox.get_item(item.id)).retries_count == 0

    async def test_failed_increments_retries_and_truncates_message(self, inbox_env, settings):
        inbox, integration_id = inbox_env
        item = await _stage(inbox, integration_id)

        failed = await inbox.mark_failed(item.id, "x" * (settings.inbox_error_max_length + 100))

        assert failed.status == InboxStatus.FAILED.value
        assert failed.retries_count == 1
        assert len(failed.error_message) == settings.inbox_error_max_length

    async def test_failed_item_can_only_return_through_reopen(self, inbox_env):
        inbox, integration_id = inbox_env
        item = await _stage(inbox, integration_id)
        await inbox.mark_failed(item.id, "boom")

        with pytest.raises(InboxTransitionError):
            await inbox.mark_processed(item.id)

        reopened = await inbox.reopen(item.id)
        assert reopened.status == InboxStatus.PENDING.value
        assert reopened.retries_count == 1

        again = await inbox.mark_failed(item.id, "boom again")
        assert again.retries_count == 2

    async def test_reopen_requires_terminal_state(self, inbox_env):
        inbox, integration_id = inbox_env
        item = await _stage(inbox, integration_id)

        with pytest.raises(InboxTransitionError):
            await inbox.reopen(item.id)

    async def test_ignored_is_terminal(self, inbox_env):
        inbox, integration_id = inbox_env
        item = await _stage(inbox, integration_id)

        ignored = await inbox.mark_ignored(item.id, "heartbeat")

        assert ignored.status == InboxStatus.IGNORED.value
        assert ignored.error_message == "heartbeat"
        with pytest.raises(InboxTransitionError):
            await inbox.mark_processed(item.id)

    async def test_unknown_item_raises_not_found(self, inbox_env):
        inbox, _ = inbox_env

        with pytest.raises(InboxItemNotFoundError):
            await inbox.mark_processed(uuid.uuid4())
        with pytest.raises(InboxItemNotFoundError):
            await inbox.get_item(uuid.uuid4())

    async def test_list_items_filters_and_paginates(self, inbox_env):
        inbox, integration_id = inbox_env
        items = [await _stage(inbox, integration_id, external_id=f"X{i}") for i in range(5)]
        await inbox.mark_failed(items[0].id, "boom")

        page = await inbox.list_items(integration_id=integration_id, page=1, page_size=2)
        assert page.total == 5
        assert page.total_pages == 3
        assert len(page.items) == 2

        failed = await inbox.list_items(status="failed")
        assert [i.id for i in failed.items] == [items[0].id]

        empty = await inbox.list_items(integration_id=uuid.uuid4())
        assert empty.total == 0
        assert empty.total_pages == 0

        counts = await inbox.count_by_status(integration_id)
        assert counts == {"PENDING": 4, "PROCESSED": 0, "FAILED": 1, "IGNORED": 0}
