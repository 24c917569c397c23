import pytest
from sqlalchemy.exc import SQLAlchemyError

from app.core.errors import DatabaseError, InvalidStateError, LoanNotFoundError, LoanValidationError
from app.models.user_action import UserAction
from app.models.workflow_stage import WorkflowStage
from app.services import loan_workflow
from conftest import FakeResult, make_loan, make_stages, sequence_handler


def _stage(stages, stage_id):
    return next(stage for stage in stages if stage.stage_id == stage_id)


def _with_loan_and_stages(fake_db, loan, stages):
    fake_db.on_execute(
        sequence_handler([FakeResult(scalar=loan), FakeResult(items=stages)])
    )


async def test_initialize_stages_builds_eight_pending_rows(fake_db):
    stages = await loan_workflow.initialize_stages(fake_db, "CL-20261019-0001")

    assert [stage.stage_id for stage in stages] == list(range(1, 9))
    assert stages[0].stage_name == "new_loan_registration"
    assert stages[7].estimated_time == 1800
    assert all(stage.status == "pending" for stage in stages)
    assert fake_db.commits == 1


async def test_initialize_stages_failure_raises_database_error(fake_db):
    fake_db.fail_commits = [SQLAlchemyError("insert failed")]

    with pytest.raises(DatabaseError):
        await loan_workflow.initialize_stages(fake_db, "CL-20261019-0001")
    assert fake_db.rollbacks == 1


async def test_advance_completes_current_and_opens_next(fake_db, principal):
    loan = make_loan(current_stage=3, workflow_status="processing")
    all_stages = make_stages(completed_through=2, current=3, current_progress=70)
    locked = [_stage(all_stages, 3), _stage(all_stages, 4)]
    _with_loan_and_stages(fake_db, loan, locked)

    result = await loan_workflow.advance_stage(fake_db, loan.loan_id, principal=principal)

    assert (result.previous_stage, result.current_stage) == (3, 4)
    assert result.status == "processing"
    completed, opened = locked
    assert (completed.status, completed.progress) == ("completed", 100)
    assert completed.completed_at is not None
    assert (opened.status, opened.progress) == ("processing", 0)
    assert opened.started_at is not None
    assert loan.current_stage == 4
    assert loan.workflow_status == "processing"
    assert fake_db.commits == 1
    action = fake_db.added_of(UserAction)[0]
    assert action.action_type == "advance"
    assert action.before_data["current_stage"] == 3
    assert action.after_data["current_stage"] == 4


async def test_advance_at_final_stage_is_rejected_without_changes(fake_db):
    loan = make_loan(current_stage=8, workflow_status="processing")
    _with_loan_and_stages(fake_db, loan, [])

    with pytest.raises(InvalidStateError):
        await loan_workflow.advance_stage(fake_db, loan.loan_id)

    assert loan.current_stage == 8
    assert fake_db.commits == 0
    assert fake_db.rollbacks == 1
    assert fake_db.added == []


async def test_advance_unknown_loan(fake_db):
    with pytest.raises(LoanNotFoundError):
        await loan_workflow.advance_stage(fake_db, "CL-20000101-0000")
    assert fake_db.commits == 0


async def test_advance_merges_stage_data(fake_db):
    loan = make_loan(current_stage=1)
    stages = make_stages(current=1)
    stages[0].stage_data = {"reviewer": "kim"}
    _with_loan_and_stages(fake_db, loan, stages[:2])

    result = await loan_workflow.advance_stage(
        fake_db, loan.loan_id, stage_data={"notes": "all documents present"}
    )

    assert stages[0].stage_data == {"reviewer": "kim", "notes": "all documents present"}
    assert result.stage_data == {"notes": "all documents present"}


async def test_advance_recreates_missing_stage_rows(fake_db):
    loan = make_loan(current_stage=1)
    _with_loan_and_stages(fake_db, loan, [])

    result = await loan_workflow.advance_stage(fake_db, loan.loan_id)

    rebuilt = fake_db.added_of(WorkflowStage)
    assert [stage.stage_id for stage in rebuilt] == [1, 2]
    assert rebuilt[0].status == "completed"
    assert rebuilt[1].status == "processing"
    assert result.current_stage == 2


async def test_advance_database_failure_rolls_back(fake_db):
    loan = make_loan(current_stage=2, workflow_status="processing")
    _with_loan_and_stages(fake_db, loan, make_stages(completed_through=1, current=2)[1:3])
    fake_db.fail_commits = [SQLAlchemyError("deadlock detected")]

    with pytest.raises(DatabaseError):
        await loan_workflow.advance_stage(fake_db, loan.loan_id)
    assert fake_db.rollbacks == 1


@pytest.mark.parametrize(
    "stage_id, status, progress",
    [
        (0, None, None),
        (9, None, None),
        (True, None, None),
        ("3", None, None),
        (3, "done", None),
        (3, None, 101),
        (3, None, -1),
    ],
)
async def test_update_stage_validates_input(fake_db, stage_id, status, progress):
    with pytest.raises(LoanValidationError):
        await loan_workflow.update_stage(
            fake_db, "CL-20261019-0001", stage_id, status=status, progress=progress
        )
    assert fake_db.executed == []


async def test_update_stage_sets_processing_timestamp(fake_db, principal):
    loan = make_loan(current_stage=1)
    stages = make_stages()
    _with_loan_and_stages(fake_db, loan, [stages[1]])

    result = await loan_workflow.update_stage(
        fake_db, loan.loan_id, 2, status="processing", progress=10, principal=principal
    )

    assert stages[1].started_at is not None
    assert (result.status, result.progress) == ("processing", 10)
    assert (result.current_stage, result.workflow_status) == (2, "processing")
    assert fake_db.added_of(UserAction)[0].action_type == "stage_update"


async def test_update_stage_progress_only_keeps_status(fake_db):
    loan = make_loan(current_stage=4, workflow_status="processing")
    stages = make_stages(completed_through=3, current=4)
    _with_loan_and_stages(fake_db, loan, [stages[3]])

    result = await loan_workflow.update_stage(fake_db, loan.loan_id, 4, progress=60)

    assert result.status == "processing"
    assert result.progress == 60


async def test_update_final_stage_completes_workflow(fake_db):
    loan = make_loan(current_stage=8, workflow_status="processing")
    stages = make_stages(completed_through=7, current=8)
    _with_loan_and_stages(fake_db, loan, [stages[7]])

    result = await loan_workflow.update_stage(fake_db, loan.loan_id, 8, status="completed", progress=100)

    assert result.workflow_status == "completed"
    assert stages[7].completed_at is not None


async def test_update_stage_can_point_loan_at_an_earlier_stage(fake_db):
    loan = make_loan(current_stage=5, workflow_status="processing")
    stages = make_stages(completed_through=4, current=5)
    _with_loan_and_stages(fake_db, loan, [stages[1]])

    result = await loan_workflow.update_stage(fake_db, loan.loan_id, 2, status="failed")

    assert loan.current_stage == 2
    assert result.status == "failed"
    assert result.workflow_status == "processing"


def test_advance_route(client, fake_db):
    loan = make_loan(current_stage=3, workflow_status="processing")
    stages = make_stages(completed_through=2, current=3)
    _with_loan_and_stages(fake_db, loan, stages[2:4])

    resp = client.post(f"/api/loans/{loan.loan_id}/workflow/advance")

    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["previousStage"] == 3
    assert data["currentStage"] == 4
    assert data["status"] == "processing"


def test_advance_route_at_final_stage(client, fake_db):
    loan = make_loan(current_stage=8, workflow_status="processing")
    _with_loan_and_stages(fake_db, loan, [])

    resp = client.post(f"/api/loans/{loan.loan_id}/workflow/advance", json={})

    assert resp.status_code == 400
    assert resp.json()["code"] == "invalid_state"


def test_update_stage_route_rejects_out_of_range_stage(client, fake_db):
    resp = client.put("/api/loans/CL-20261019-0001/stage", json={"stageId": 9})

    assert resp.status_code == 400
    body = resp.json()
    assert body["code"] == "validation_error"
    assert body["details"]["errors"][0]["field"] == "stageId"
    assert fake_db.executed == []


@pytest.mark.parametrize("stage_id", ["3", True, 3.0])
def test_update_stage_route_requires_integer_stage_id(client, fake_db, stage_id):
    resp = client.put(
        "/api/loans/CL-20261019-0001/stage",
        json={"stageId": stage_id, "status": "processing"},
    )

    assert resp.status_code == 400
    body = resp.json()
    assert body["code"] == "validation_error"
    assert body["details"]["errors"][0]["field"] == "stageId"
    assert fake_db.executed == []


@pytest.mark.parametrize("progress", ["40", 40.0, False])
def test_update_stage_route_requires_integer_progress(client, fake_db, progress):
    resp = client.put(
        "/api/loans/CL-20261019-0001/stage",
        json={"stageId": 2, "progress": progress},
    )

    assert resp.status_code == 400
    assert resp.json()["details"]["errors"][0]["field"] == "progress"
    assert fake_db.executed == []


def test_update_stage_route(client, fake_db):
    loan = make_loan(current_stage=1)
    stages = make_stages(current=1)
    _with_loan_and_stages(fake_db, loan, [stages[0]])

    resp = client.put(
        f"/api/loans/{loan.loan_id}/stage",
        json={"stageId": 1, "status": "processing", "progress": 40},
    )

    assert resp.status_code == 200
    assert resp.json()["data"] == {
        "loanId": loan.loan_id,
        "stageId": 1,
        "status": "processing",
        "progress": 40,
        "currentStage": 1,
        "workflowStatus": "processing",
    }
