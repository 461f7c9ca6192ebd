"""
Tests for spec create / update / delete.
"""

import pytest

from specsync.core.events import RECORD_CREATED, RECORD_DELETED, RECORD_UPDATED, SpecEvent
from specsync.core.exceptions import RecordNotFoundError
from specsync.core.specs import markdown
from specsync.core.specs.models import EntityType, Phase, SyncMapping
from specsync.core.specs.service import SpecService


@pytest.fixture
def service(records, mappings, spec_dir, bus):
    return SpecService(records, mappings, spec_dir, bus, dispatch_timeout=5)


@pytest.fixture
def seen(bus):
    events: list[SpecEvent] = []

    async def listener(event: SpecEvent) -> None:
        events.append(event)

    for name in (RECORD_CREATED, RECORD_UPDATED, RECORD_DELETED):
        bus.subscribe(name, listener)
    return events


class TestCreate:
    """Test spec creation."""

    @pytest.mark.asyncio
    async def test_create_writes_template(self, service, records, spec_dir, seen):
        """Test record, file and event."""
        change = await service.create("Login page", description="Users need SSO")
        record = change.record

        assert records.require(record.id).phase == Phase.REQUIREMENTS
        content = markdown.spec_path(spec_dir, record.id).read_text()
        assert content.startswith("# Login page\n")
        assert "Users need SSO" in content
        assert f"**Spec ID:** {record.id}" in content

        assert [(e.name, e.record_id) for e in seen] == [(RECORD_CREATED, record.id)]
        assert seen[0].payload == {"name": "Login page", "phase": "requirements"}

    @pytest.mark.asyncio
    async def test_create_file_failure_removes_record(self, service, records, seen, monkeypatch):
        """Test a record is not left behind without its file."""

        def boom(*args, **kwargs):
            raise OSError("read-only file system")

        monkeypatch.setattr(markdown, "write_durable", boom)

        with pytest.raises(OSError):
            await service.create("Login page")
        assert records.list_records() == []
        assert seen == []

    @pytest.mark.asyncio
    async def test_listener_failure_logged(self, service, bus, caplog):
        """Test a failing listener does not fail creation."""

        async def broken(event: SpecEvent) -> None:
            raise RuntimeError("offline")

        bus.subscribe(RECORD_CREATED, broken)
        change = await service.create("Login page")

        assert not change.dispatch.ok
        assert "offline" in caplog.text


class TestUpdate:
    """Test spec updates."""

    @pytest.mark.asyncio
    async def test_rename_mirrors_into_file(self, service, make_spec, spec_dir, seen):
        """Test the title line and updated stamp follow the record."""
        record = make_spec()

        change = await service.update(record.id, name="Login with SSO")

        doc = markdown.parse_file(markdown.spec_path(spec_dir, record.id))
        assert doc.name == "Login with SSO"
        assert markdown.format_timestamp(doc.updated_at) == markdown.format_timestamp(
            change.record.updated_at
        )
        assert seen[-1].name == RECORD_UPDATED
        assert seen[-1].payload == {"fields": ["name"]}

    @pytest.mark.asyncio
    async def test_update_without_file(self, service, make_spec, records):
        """Test a missing file only updates the record."""
        record = make_spec(write_file=False)
        await service.update(record.id, description="New")
        assert records.require(record.id).description == "New"

    @pytest.mark.asyncio
    async def test_update_unknown(self, service):
        """Test unknown specs raise."""
        with pytest.raises(RecordNotFoundError):
            await service.update("nope", name="x")


class TestDelete:
    """Test spec deletion."""

    @pytest.mark.asyncio
    async def test_delete_carries_issue_number(self, service, make_spec, mappings, records, spec_dir, seen):
        """Test the event payload keeps the issue number after the cascade."""
        record = make_spec()
        mappings.upsert(
            SyncMapping(
                entity_type=EntityType.RECORD,
                local_id=record.id,
                record_id=record.id,
                remote_id="1001",
                remote_number=1,
            )
        )

        await service.delete(record.id)

        assert records.get(record.id) is None
        assert mappings.get(EntityType.RECORD, record.id) is None
        assert not markdown.spec_path(spec_dir, record.id).exists()
        assert seen[-1].name == RECORD_DELETED
        assert seen[-1].payload == {"name": "Login page", "issue_number": 1}

    @pytest.mark.asyncio
    async def test_keep_file(self, service, make_spec, spec_dir, seen):
        """Test keep_file leaves the Markdown in place."""
        record = make_spec()
        await service.delete(record.id, keep_file=True)

        assert markdown.spec_path(spec_dir, record.id).exists()
        assert seen[-1].payload["issue_number"] is None
