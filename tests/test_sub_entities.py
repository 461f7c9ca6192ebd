"""
Tests for task sub-issues.
"""

import pytest

from specsync.core.exceptions import NotLinkedError, SubEntityNotFoundError, ValidationError
from specsync.core.specs.models import EntityType, MappingStatus, SyncMapping, TaskItem
from specsync.core.sync.sub_entities import MAX_SUB_ENTITIES_PER_PARENT, SubEntityManager


@pytest.fixture
def manager(records, mappings, github_client, spec_dir):
    return SubEntityManager(records, mappings, github_client, spec_dir)


@pytest.fixture
def linked_spec(make_spec, mappings, fake_github):
    """A spec with tasks whose issue (#1) already exists."""

    def _make(tasks=("Add OIDC client", "Wire login page")):
        record = make_spec(tasks=list(tasks))
        issue = fake_github.add_issue("[tasks] Login page", "Parent body")
        mappings.upsert(
            SyncMapping(
                entity_type=EntityType.RECORD,
                local_id=record.id,
                record_id=record.id,
                remote_id=str(issue["id"]),
                remote_number=issue["number"],
                node_id=issue["node_id"],
            )
        )
        return record

    return _make


class TestCreateSubEntities:
    """Test batch creation."""

    @pytest.mark.asyncio
    async def test_creates_and_links(self, manager, linked_spec, fake_github, mappings):
        """Test one linked sub-issue per task plus the parent checklist."""
        record = linked_spec()
        tasks = manager.tasks_for_record(record.id)

        batch = await manager.create_sub_entities_from_tasks(record.id, tasks)

        assert batch.ok
        assert [c.number for c in batch.created] == [2, 3]
        assert fake_github.sub_issues == {1: [2, 3]}
        assert "Part of #1" in fake_github.issues[2]["body"]
        assert f"**Task ID:** {tasks[0].id}" in fake_github.issues[2]["body"]

        mapping = mappings.get(EntityType.SUB_ENTITY, tasks[0].id)
        assert mapping.status == MappingStatus.SUCCESS
        assert mapping.parent_number == 1
        assert mapping.record_id == record.id

        parent_body = fake_github.issues[1]["body"]
        assert "## Sub-issues" in parent_body
        assert "- [ ] #2 Add OIDC client" in parent_body
        assert "- [ ] #3 Wire login page" in parent_body

    @pytest.mark.asyncio
    async def test_checklist_joins_existing_section(self, manager, linked_spec, fake_github):
        """Test new entries land under the existing heading, not after later sections."""
        record = linked_spec()
        fake_github.issues[1]["body"] = (
            "Parent body\n\n## Sub-issues\n\n- [x] #9 Older task\n\n## Notes\n\nKeep me last\n"
        )

        await manager.create_sub_entities_from_tasks(record.id, manager.tasks_for_record(record.id))

        assert fake_github.issues[1]["body"] == (
            "Parent body\n\n## Sub-issues\n\n- [x] #9 Older task\n"
            "- [ ] #2 Add OIDC client\n- [ ] #3 Wire login page\n\n## Notes\n\nKeep me last\n"
        )

    @pytest.mark.asyncio
    async def test_repeated_titles_each_get_a_sub_issue(self, manager, linked_spec, fake_github):
        """Test a title ending in a number never shares an ID with a repeated title."""
        record = linked_spec(tasks=["Write docs", "Write docs", "Write docs 2"])
        tasks = manager.tasks_for_record(record.id)

        batch = await manager.create_sub_entities_from_tasks(record.id, tasks)

        assert [c.number for c in batch.created] == [2, 3, 4]
        assert batch.skipped == []
        assert fake_github.issues[4]["title"] == "Write docs 2"

    @pytest.mark.asyncio
    async def test_rerun_skips_existing(self, manager, linked_spec, fake_github):
        """Test a second run creates nothing."""
        record = linked_spec()
        tasks = manager.tasks_for_record(record.id)
        await manager.create_sub_entities_from_tasks(record.id, tasks)
        created_before = fake_github.created

        batch = await manager.create_sub_entities_from_tasks(record.id, tasks)

        assert batch.created == []
        assert batch.skipped == [t.id for t in tasks]
        assert fake_github.created == created_before

    @pytest.mark.asyncio
    async def test_too_many_tasks(self, manager, linked_spec, fake_github):
        """Test the per-parent cap is enforced before any call."""
        record = linked_spec()
        tasks = [
            TaskItem(id=f"{record.id}:t{i}", title=f"Task {i}")
            for i in range(MAX_SUB_ENTITIES_PER_PARENT + 1)
        ]
        requests_before = len(fake_github.requests)

        with pytest.raises(ValidationError, match="at most 100"):
            await manager.create_sub_entities_from_tasks(record.id, tasks)
        assert len(fake_github.requests) == requests_before

    @pytest.mark.asyncio
    async def test_parent_not_linked(self, manager, make_spec):
        """Test sub-issues need the spec's issue first."""
        record = make_spec(tasks=["A"])
        with pytest.raises(NotLinkedError):
            await manager.create_sub_entities_from_tasks(
                record.id, manager.tasks_for_record(record.id)
            )

    @pytest.mark.asyncio
    async def test_link_failure_then_relink(self, manager, linked_spec, fake_github, mappings):
        """Test a link failure keeps the issue and a re-run only relinks it."""
        record = linked_spec(tasks=["Only task"])
        tasks = manager.tasks_for_record(record.id)
        fake_github.fail("POST", "addSubIssue", 422)

        batch = await manager.create_sub_entities_from_tasks(record.id, tasks)

        assert not batch.ok
        mapping = mappings.get(EntityType.SUB_ENTITY, tasks[0].id)
        assert mapping.status == MappingStatus.ERROR
        assert mapping.remote_number == 2
        assert mapping.error_message.startswith("Linking failed:")
        created_before = fake_github.created

        batch = await manager.create_sub_entities_from_tasks(record.id, tasks)

        assert batch.ok
        assert [c.number for c in batch.created] == [2]
        assert fake_github.created == created_before
        assert fake_github.sub_issues == {1: [2]}
        assert mappings.get(EntityType.SUB_ENTITY, tasks[0].id).status == MappingStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_create_failure_stops_batch(self, manager, linked_spec, fake_github, mappings):
        """Test a failed create releases its reservation and stops the batch."""
        record = linked_spec()
        tasks = manager.tasks_for_record(record.id)
        fake_github.fail("POST", "/repos/acme/widgets/issues", 422)

        batch = await manager.create_sub_entities_from_tasks(record.id, tasks)

        assert [e.task_id for e in batch.errors] == [tasks[0].id]
        assert batch.created == []
        assert mappings.get(EntityType.SUB_ENTITY, tasks[0].id) is None
        assert mappings.get(EntityType.SUB_ENTITY, tasks[1].id) is None

    @pytest.mark.asyncio
    async def test_checklist_failure_is_warning(self, manager, linked_spec, fake_github):
        """Test a failed parent update does not undo the sub-issues."""
        record = linked_spec(tasks=["Only task"])
        fake_github.fail("PATCH", "/issues/1", 422)

        batch = await manager.create_sub_entities_from_tasks(
            record.id, manager.tasks_for_record(record.id)
        )

        assert batch.ok
        assert len(batch.created) == 1
        assert "checklist" in batch.warnings[0]

    @pytest.mark.asyncio
    async def test_no_tasks(self, manager, linked_spec, fake_github):
        """Test an empty task list is a no-op."""
        record = linked_spec(tasks=())
        requests_before = len(fake_github.requests)
        batch = await manager.create_sub_entities_from_tasks(record.id, [])
        assert batch.ok
        assert len(fake_github.requests) == requests_before


class TestTaskStatus:
    """Test closing and reopening tasks."""

    async def _setup(self, manager, linked_spec, titles=("Add OIDC client", "Wire login page")):
        record = linked_spec(tasks=titles)
        tasks = manager.tasks_for_record(record.id)
        await manager.create_sub_entities_from_tasks(record.id, tasks)
        return tasks

    @pytest.mark.asyncio
    async def test_close_flips_parent_checkbox(self, manager, linked_spec, fake_github):
        """Test closing a sub-issue checks its parent line."""
        tasks = await self._setup(manager, linked_spec)

        issue = await manager.update_sub_entity_status(tasks[0].id, "closed")

        assert issue.state == "closed"
        body = fake_github.issues[1]["body"]
        assert "- [x] #2 Add OIDC client" in body
        assert "- [ ] #3 Wire login page" in body

    @pytest.mark.asyncio
    async def test_reopen(self, manager, linked_spec, fake_github):
        """Test reopening unchecks the line again."""
        tasks = await self._setup(manager, linked_spec)
        await manager.update_sub_entity_status(tasks[0].id, "closed")

        await manager.update_sub_entity_status(tasks[0].id, "open")

        assert fake_github.issues[2]["state"] == "open"
        assert "- [ ] #2 Add OIDC client" in fake_github.issues[1]["body"]

    @pytest.mark.asyncio
    async def test_invalid_state(self, manager):
        """Test only open and closed are accepted."""
        with pytest.raises(ValidationError):
            await manager.update_sub_entity_status("t1", "merged")

    @pytest.mark.asyncio
    async def test_unknown_task(self, manager):
        """Test a task without a sub-issue."""
        with pytest.raises(SubEntityNotFoundError):
            await manager.update_sub_entity_status("r1:nothing", "closed")

    @pytest.mark.asyncio
    async def test_completion_closes_parent_when_all_done(self, manager, linked_spec, fake_github):
        """Test the parent closes only after the last sub-issue."""
        tasks = await self._setup(manager, linked_spec)

        first = await manager.handle_task_completion(tasks[0].id)
        assert not first.parent_closed
        assert fake_github.issues[1]["state"] == "open"

        second = await manager.handle_task_completion(tasks[1].id)
        assert second.parent_closed
        assert fake_github.issues[1]["state"] == "closed"
        assert "All sub-issues are closed" in fake_github.comments[1][-1]

    @pytest.mark.asyncio
    async def test_completion_of_unknown_task_is_skipped(self, manager, fake_github):
        """Test completing a task that never got a sub-issue is not an error."""
        result = await manager.handle_task_completion("r1:missing")
        assert result.skipped
        assert fake_github.requests == []
