"""Static definition of the eight-stage corporate loan review workflow.

Shared by the API services and the client library so both sides agree on
stage ids, names and the two progress formulas.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

STAGE_STATUSES = ("pending", "processing", "completed", "failed")
WORKFLOW_STATUSES = ("pending", "processing", "completed", "failed")

FIRST_STAGE = 1
FINAL_STAGE = 8
TOTAL_STAGES = 8


@dataclass(frozen=True, slots=True)
class StageTask:
    id: str
    name: str


@dataclass(frozen=True, slots=True)
class StageDefinition:
    id: int
    name: str
    title: str
    description: str
    estimated_time: int
    tasks: tuple[StageTask, ...]


STAGE_DEFINITIONS: tuple[StageDefinition, ...] = (
    StageDefinition(
        id=1,
        name="new_loan_registration",
        title="File upload",
        description="Register the loan and upload the required corporate documents",
        estimated_time=300,
        tasks=(
            StageTask("basic_info", "Enter basic information"),
            StageTask("document_upload", "Upload documents"),
            StageTask("validation", "Validate files"),
        ),
    ),
    StageDefinition(
        id=2,
        name="document_parsing",
        title="AI document analysis",
        description="Classify uploaded documents and extract their contents",
        estimated_time=600,
        tasks=(
            StageTask("classification", "Classify documents"),
            StageTask("ocr", "Extract text"),
            StageTask("structure_analysis", "Analyse structure"),
            StageTask("confidence_scoring", "Score confidence"),
        ),
    ),
    StageDefinition(
        id=3,
        name="post_correction",
        title="Data verification",
        description="Review and correct the extracted data",
        estimated_time=900,
        tasks=(
            StageTask("review_extracted", "Review extracted data"),
            StageTask("correct_errors", "Fix errors"),
            StageTask("verify_data", "Verify data"),
        ),
    ),
    StageDefinition(
        id=4,
        name="chunking_embedding",
        title="Vectorization",
        description="Chunk documents and store their embeddings",
        estimated_time=300,
        tasks=(
            StageTask("chunking", "Chunk documents"),
            StageTask("embedding", "Embed vectors"),
            StageTask("storage", "Store vectors"),
        ),
    ),
    StageDefinition(
        id=5,
        name="credit_application_generation",
        title="AI application drafting",
        description="Draft the credit application from the verified data",
        estimated_time=600,
        tasks=(
            StageTask("basic_info_gen", "Generate basic information"),
            StageTask("financial_analysis", "Financial analysis"),
            StageTask("risk_assessment", "Risk assessment"),
            StageTask("final_generation", "Finalize application"),
        ),
    ),
    StageDefinition(
        id=6,
        name="rm_review",
        title="RM approval",
        description="Relationship manager reviews and approves the application",
        estimated_time=1200,
        tasks=(
            StageTask("review_application", "Review application"),
            StageTask("edit_content", "Edit content"),
            StageTask("final_approval", "Final approval"),
        ),
    ),
    StageDefinition(
        id=7,
        name="review_opinion_generation",
        title="AI analysis report",
        description="Generate the automated review opinion",
        estimated_time=600,
        tasks=(
            StageTask("risk_analysis", "Overall risk analysis"),
            StageTask("recommendation", "Derive recommendations"),
            StageTask("review_points", "Summarize review points"),
            StageTask("opinion_generation", "Generate opinion"),
        ),
    ),
    StageDefinition(
        id=8,
        name="final_review",
        title="Final underwriting review",
        description="Underwriter makes the final credit decision",
        estimated_time=1800,
        tasks=(
            StageTask("review_application", "Review credit application"),
            StageTask("review_opinion", "Review AI opinion"),
            StageTask("final_decision", "Final decision"),
            StageTask("write_opinion", "Write review opinion"),
        ),
    ),
)

_BY_ID = {definition.id: definition for definition in STAGE_DEFINITIONS}


def get_stage_definition(stage_id: int) -> StageDefinition:
    try:
        return _BY_ID[stage_id]
    except KeyError:
        raise ValueError(f"Unknown stage id {stage_id}") from None


def is_valid_stage_id(stage_id: object) -> bool:
    return isinstance(stage_id, int) and not isinstance(stage_id, bool) and stage_id in _BY_ID


def round_half_up(value: float) -> int:
    # Python's round() is banker's rounding; progress uses arithmetic rounding
    return int(math.floor(value + 0.5))


def server_overall_progress(completed_stages: int, total_stages: int) -> int:
    """Share of completed stage rows, as reported by the workflow endpoint."""
    if total_stages <= 0:
        return 0
    return round_half_up(completed_stages * 100 / total_stages)


def display_overall_progress(completed_stages: int, current_stage_progress: int) -> int:
    """Client-side progress that credits partial work on the current stage."""
    return round_half_up((completed_stages * 100 + current_stage_progress) / TOTAL_STAGES)
