"""Tests for target edit sessions"""
import pytest
import pytest_asyncio

from opcore.domain.enums import ReconcileAction, ReconcileOutcome, ChangeKind
from opcore.domain.errors import NotAuthorizedError, InvalidTransitionError, ValidationError
from opcore.domain.models import OpTarget, StagingPoint


@pytest_asyncio.fixture
async def operation(session, case_agent, team, agency):
    return await session.operations.create_operation("Night Watch", case_agent, team, agency)


class TestBegin:
    """Test who may open an edit session"""

    @pytest.mark.asyncio
    async def test_requires_membership(self, session, operation, outsider):
        with pytest.raises(NotAuthorizedError):
            await session.begin_edit(operation.id, outsider)

    @pytest.mark.asyncio
    async def test_ended_operation(self, session, operation, case_agent):
        await session.operations.end_operation(operation.id, case_agent)
        with pytest.raises(InvalidTransitionError):
            await session.begin_edit(operation.id, case_agent)

    @pytest.mark.asyncio
    async def test_loads_original_snapshot(self, session, store, operation, case_agent):
        target = OpTarget.person("John Smith")
        store.seed_targets(operation.id, [target], [StagingPoint(label="Lot", lat=1.0, lng=1.0)])

        edit = await session.begin_edit(operation.id, case_agent)

        assert [t.id for t in edit.original_targets] == [target.id]
        assert edit.targets == edit.original_targets
        assert len(edit.staging) == 1
        assert not edit.has_changes


class TestCommit:
    """Test commit through the reconciler"""

    @pytest.mark.asyncio
    async def test_replace_a_with_b(self, session, store, operation, case_agent):
        target_a = OpTarget.person("Target A")
        store.seed_targets(operation.id, [target_a])
        edit = await session.begin_edit(operation.id, case_agent)

        edit.remove_target(target_a.id)
        target_b = edit.add_target(OpTarget.vehicle(make="Honda", model="Civic"))
        result = await session.commit_edit(edit)

        assert [(i.entity_id, i.action, i.outcome) for i in result.items] == [
            (target_a.id, ReconcileAction.DELETE, ReconcileOutcome.OK),
            (target_b.id, ReconcileAction.CREATE, ReconcileOutcome.OK),
        ]
        assert [t.id for t in edit.original_targets] == [target_b.id]
        assert not edit.has_changes

    @pytest.mark.asyncio
    async def test_edit_in_place_is_not_sent(self, session, store, operation, case_agent):
        target = OpTarget.person("John Smith")
        store.seed_targets(operation.id, [target])
        edit = await session.begin_edit(operation.id, case_agent)

        edited = edit.edit_target(target.id, notes="Drives a red truck")
        result = await session.commit_edit(edit)

        assert edited.id == target.id
        assert result.items == []
        assert store.mutating_calls == [("create_operation", operation.id)]

    @pytest.mark.asyncio
    async def test_replace_is_sent_as_delete_and_create(self, session, store, operation, case_agent):
        target = OpTarget.person("John Smith")
        store.seed_targets(operation.id, [target])
        edit = await session.begin_edit(operation.id, case_agent)

        replacement = edit.replace_target(target.id, notes="Drives a red truck")
        result = await session.commit_edit(edit)

        assert replacement.id != target.id
        assert [(i.entity_id, i.action) for i in result.items] == [
            (target.id, ReconcileAction.DELETE),
            (replacement.id, ReconcileAction.CREATE),
        ]
        assert store.targets[replacement.id][1].notes == "Drives a red truck"

    @pytest.mark.asyncio
    async def test_commit_again_retries_failures(self, session, store, operation, case_agent):
        edit = await session.begin_edit(operation.id, case_agent)
        target = edit.add_target(OpTarget.person("Jane Doe"))
        store.fail("create_target", entity_id=target.id)

        first = await session.commit_edit(edit)
        assert first.outcome_for(target.id).outcome == ReconcileOutcome.FAILED
        assert edit.has_changes

        store.recover()
        second = await session.commit_edit(edit)

        assert second.outcome_for(target.id).outcome == ReconcileOutcome.OK
        assert store.calls_to("create_target") == [target.id, target.id]
        assert not edit.has_changes

    @pytest.mark.asyncio
    async def test_targets_added_by_another_session_survive(self, session, store, operation, case_agent):
        mine = await session.begin_edit(operation.id, case_agent)
        theirs = await session.begin_edit(operation.id, case_agent)

        their_target = theirs.add_target(OpTarget.person("Added By B"))
        await session.commit_edit(theirs)

        my_target = mine.add_target(OpTarget.person("Added By A"))
        await session.commit_edit(mine)
        assert not mine.has_changes
        assert [t.id for t in mine.original_targets] == [my_target.id]

        again = await session.commit_edit(mine)

        assert again.items == []
        assert store.calls_to("delete_target") == []
        targets, _ = await store.get_operation_targets(operation.id)
        assert {t.id for t in targets} == {their_target.id, my_target.id}

    @pytest.mark.asyncio
    async def test_commit_does_not_read_back_the_store(self, session, store, operation, case_agent):
        target_a = OpTarget.person("Target A")
        store.seed_targets(operation.id, [target_a])
        edit = await session.begin_edit(operation.id, case_agent)
        store.fail("get_operation_targets")

        edit.remove_target(target_a.id)
        target_b = edit.add_target(OpTarget.person("Target B"))
        result = await session.commit_edit(edit)

        assert [(i.entity_id, i.outcome) for i in result.items] == [
            (target_a.id, ReconcileOutcome.OK),
            (target_b.id, ReconcileOutcome.OK),
        ]
        assert [t.id for t in edit.original_targets] == [target_b.id]

    @pytest.mark.asyncio
    async def test_failed_delete_stays_in_original(self, session, store, operation, case_agent):
        target = OpTarget.person("Target A")
        store.seed_targets(operation.id, [target])
        edit = await session.begin_edit(operation.id, case_agent)
        store.fail("delete_target", entity_id=target.id)

        edit.remove_target(target.id)
        await session.commit_edit(edit)

        assert [t.id for t in edit.original_targets] == [target.id]
        assert [t.id for t in edit.pending_changes().targets_to_delete] == [target.id]

    @pytest.mark.asyncio
    async def test_staging_points(self, session, store, operation, case_agent):
        edit = await session.begin_edit(operation.id, case_agent)
        geocoded = edit.add_staging_point(StagingPoint(label="Safe house", lat=40.0, lng=-75.0))
        pending = edit.add_staging_point(StagingPoint(label="Somewhere", address="Main St"))

        changes = edit.pending_changes()
        assert [p.id for p in changes.staging_to_create] == [geocoded.id]
        assert [p.id for p in changes.staging_skipped] == [pending.id]

        result = await session.commit_edit(edit)
        assert result.outcome_for(pending.id).outcome == ReconcileOutcome.SKIPPED
        assert [p.id for p in edit.original_staging] == [geocoded.id]

        # Once geocoded under a new id it goes out on the next commit
        located = edit.replace_staging_point(pending.id, lat=41.0, lng=-74.0)
        result = await session.commit_edit(edit)
        assert result.outcome_for(located.id).outcome == ReconcileOutcome.OK

    @pytest.mark.asyncio
    async def test_commit_emits_change(self, session, operation, case_agent):
        events = []
        session.notifier.subscribe(events.append)
        edit = await session.begin_edit(operation.id, case_agent)
        edit.add_target(OpTarget.location(name="Warehouse", lat=40.0, lng=-75.0))

        result = await session.commit_edit(edit)

        assert events[-1].kind == ChangeKind.TARGETS_RECONCILED
        assert events[-1].payload["succeeded"] == 1
        assert events[-1].payload["correlation_id"] == result.correlation_id


class TestWorkingCopy:
    """Test working copy edits"""

    @pytest.mark.asyncio
    async def test_duplicate_add(self, session, operation, case_agent):
        edit = await session.begin_edit(operation.id, case_agent)
        target = edit.add_target(OpTarget.person("A"))
        with pytest.raises(ValidationError):
            edit.add_target(target)

    @pytest.mark.asyncio
    async def test_unknown_id(self, session, operation, case_agent):
        edit = await session.begin_edit(operation.id, case_agent)
        with pytest.raises(ValidationError):
            edit.remove_target(OpTarget.person("A").id)

    @pytest.mark.asyncio
    async def test_original_is_untouched_by_edits(self, session, store, operation, case_agent):
        target = OpTarget.person("A")
        store.seed_targets(operation.id, [target])
        edit = await session.begin_edit(operation.id, case_agent)

        edit.remove_target(target.id)

        assert edit.targets == []
        assert [t.id for t in edit.original_targets] == [target.id]
        assert [t.id for t in edit.pending_changes().targets_to_delete] == [target.id]
