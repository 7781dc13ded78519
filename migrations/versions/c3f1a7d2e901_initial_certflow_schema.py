"""initial_certflow_schema

Projects, source documents, safety entities, workflow store, generation
usage/audit logs and notifications.

Revision ID: c3f1a7d2e901
Revises:
Create Date: 2026-10-17 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = "c3f1a7d2e901"
down_revision = None
branch_labels = None
depends_on = None

_ACTIVE_RUN_SQL = "status IN ('awaiting_approval', 'paused', 'pending', 'running')"


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade():
    bind = op.get_bind()
    existing_tables = set(sa_inspect(bind).get_table_names())

    if "projects" not in existing_tables:
        op.create_table(
            "projects",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("industry", sa.String(length=80), nullable=True),
            sa.Column("compliance_framework", sa.String(length=30), nullable=False, server_default="FTA"),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint("id"),
        )

    if "project_documents" not in existing_tables:
        op.create_table(
            "project_documents",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=False),
            sa.Column("filename", sa.String(length=255), nullable=False),
            sa.Column("content_text", sa.Text(), nullable=False),
            *_timestamps(),
            sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_project_documents_project_id", "project_documents", ["project_id"])

    # ── Safety entities ──────────────────────────────────────────────────
    if "certifiable_elements" not in existing_tables:
        op.create_table(
            "certifiable_elements",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=False),
            sa.Column("uid", sa.String(length=80), nullable=False),
            sa.Column("name", sa.String(length=300), nullable=False),
            sa.Column("type", sa.String(length=20), nullable=True),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=True),
            sa.Column("sil_target", sa.String(length=10), nullable=True),
            sa.Column("parent_id", sa.Integer(), nullable=True),
            sa.Column("created_by", sa.String(length=150), nullable=True),
            *_timestamps(),
            sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["parent_id"], ["certifiable_elements.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("project_id", "uid", name="uq_ce_project_uid"),
        )
        op.create_index("ix_certifiable_elements_project_id", "certifiable_elements", ["project_id"])

    if "requirements" not in existing_tables:
        op.create_table(
            "requirements",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=False),
            sa.Column("uid", sa.String(length=80), nullable=False),
            sa.Column("title", sa.String(length=500), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("type", sa.String(length=30), nullable=True),
            sa.Column("category", sa.String(length=80), nullable=True),
            sa.Column("priority", sa.String(length=20), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=True),
            sa.Column("verification_method", sa.String(length=30), nullable=True),
            sa.Column("ce_id", sa.Integer(), nullable=True),
            sa.Column("quality_score", sa.Integer(), nullable=True),
            sa.Column("quality_status", sa.String(length=10), nullable=True),
            sa.Column("is_preventive_constraint", sa.Boolean(), nullable=True),
            sa.Column("is_human_independent", sa.Boolean(), nullable=True),
            sa.Column("is_objectively_verifiable", sa.Boolean(), nullable=True),
            sa.Column("is_severity_aligned", sa.Boolean(), nullable=True),
            sa.Column("has_clear_context", sa.Boolean(), nullable=True),
            sa.Column("has_weak_language", sa.Boolean(), nullable=True),
            sa.Column("weak_language_flags", sa.JSON(), nullable=True),
            sa.Column("quality_checked_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_by", sa.String(length=150), nullable=True),
            *_timestamps(),
            sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["ce_id"], ["certifiable_elements.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("project_id", "uid", name="uq_requirement_project_uid"),
        )
        op.create_index("ix_requirements_project_id", "requirements", ["project_id"])

    if "hazards" not in existing_tables:
        op.create_table(
            "hazards",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=False),
            sa.Column("uid", sa.String(length=80), nullable=False),
            sa.Column("title", sa.String(length=500), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("severity", sa.String(length=20), nullable=True),
            sa.Column("likelihood", sa.String(length=20), nullable=True),
            sa.Column("risk_level", sa.String(length=20), nullable=True),
            sa.Column("analysis_type", sa.String(length=20), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=True),
            sa.Column("mitigation_strategy", sa.Text(), nullable=True),
            sa.Column("requirement_id", sa.Integer(), nullable=True),
            sa.Column("ce_id", sa.Integer(), nullable=True),
            sa.Column("created_by", sa.String(length=150), nullable=True),
            *_timestamps(),
            sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["requirement_id"], ["requirements.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["ce_id"], ["certifiable_elements.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("project_id", "uid", name="uq_hazard_project_uid"),
        )
        op.create_index("ix_hazards_project_id", "hazards", ["project_id"])

    if "checklist_items" not in existing_tables:
        op.create_table(
            "checklist_items",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=False),
            sa.Column("phase_id", sa.String(length=60), nullable=False),
            sa.Column("category", sa.String(length=80), nullable=False),
            sa.Column("title", sa.String(length=500), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("verification_method", sa.String(length=30), nullable=True),
            sa.Column("priority", sa.String(length=10), nullable=True),
            sa.Column("display_order", sa.Integer(), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=True),
            sa.Column("linked_hazard_id", sa.Integer(), nullable=True),
            sa.Column("linked_requirement_id", sa.Integer(), nullable=True),
            sa.Column("linked_ce_id", sa.Integer(), nullable=True),
            sa.Column("created_by", sa.String(length=150), nullable=True),
            *_timestamps(),
            sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["linked_hazard_id"], ["hazards.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["linked_requirement_id"], ["requirements.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["linked_ce_id"], ["certifiable_elements.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_checklist_items_project_id", "checklist_items", ["project_id"])

    if "test_cases" not in existing_tables:
        op.create_table(
            "test_cases",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=False),
            sa.Column("uid", sa.String(length=80), nullable=False),
            sa.Column("title", sa.String(length=500), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("test_type", sa.String(length=20), nullable=True),
            sa.Column("procedure", sa.Text(), nullable=True),
            sa.Column("expected_result", sa.Text(), nullable=True),
            sa.Column("priority", sa.String(length=20), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=True),
            sa.Column("verification_method", sa.String(length=30), nullable=True),
            sa.Column("requirement_id", sa.Integer(), nullable=True),
            sa.Column("hazard_id", sa.Integer(), nullable=True),
            sa.Column("ce_id", sa.Integer(), nullable=True),
            sa.Column("created_by", sa.String(length=150), nullable=True),
            *_timestamps(),
            sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["requirement_id"], ["requirements.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["hazard_id"], ["hazards.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["ce_id"], ["certifiable_elements.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("project_id", "uid", name="uq_test_case_project_uid"),
        )
        op.create_index("ix_test_cases_project_id", "test_cases", ["project_id"])

    # ── Workflow store ───────────────────────────────────────────────────
    if "workflow_runs" not in existing_tables:
        op.create_table(
            "workflow_runs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=False),
            sa.Column("status", sa.String(length=30), nullable=False, server_default="pending"),
            sa.Column("current_phase", sa.String(length=50), nullable=True),
            sa.Column("workflow_config", sa.JSON(), nullable=False),
            sa.Column("initiated_by", sa.String(length=150), nullable=True),
            *_timestamps(),
            sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_workflow_runs_project_id", "workflow_runs", ["project_id"])
        op.create_index("ix_workflow_runs_status", "workflow_runs", ["status"])
        op.create_index(
            "uq_workflow_runs_active_project",
            "workflow_runs",
            ["project_id"],
            unique=True,
            postgresql_where=sa.text(_ACTIVE_RUN_SQL),
            sqlite_where=sa.text(_ACTIVE_RUN_SQL),
        )

    if "workflow_steps" not in existing_tables:
        op.create_table(
            "workflow_steps",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("workflow_run_id", sa.Integer(), nullable=False),
            sa.Column("step_number", sa.Integer(), nullable=False),
            sa.Column("step_type", sa.String(length=50), nullable=False),
            sa.Column("step_name", sa.String(length=120), nullable=False),
            sa.Column("status", sa.String(length=30), nullable=False, server_default="pending"),
            sa.Column("requires_approval", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("approved_by", sa.String(length=150), nullable=True),
            sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("rejection_reason", sa.Text(), nullable=True),
            sa.Column("output_summary", sa.JSON(), nullable=True),
            sa.Column("error_message", sa.Text(), nullable=True),
            sa.ForeignKeyConstraint(["workflow_run_id"], ["workflow_runs.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("workflow_run_id", "step_number", name="uq_workflow_step_number"),
        )
        op.create_index("ix_workflow_steps_workflow_run_id", "workflow_steps", ["workflow_run_id"])

    if "workflow_artifacts" not in existing_tables:
        op.create_table(
            "workflow_artifacts",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("workflow_run_id", sa.Integer(), nullable=False),
            sa.Column("workflow_step_id", sa.Integer(), nullable=False),
            sa.Column("artifact_type", sa.String(length=50), nullable=False),
            sa.Column("artifact_data", sa.JSON(), nullable=False),
            sa.Column("target_table", sa.String(length=50), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="pending_review"),
            sa.Column("verification_method", sa.String(length=30), nullable=True),
            sa.Column("reviewed_by", sa.String(length=150), nullable=True),
            sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("applied_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["workflow_run_id"], ["workflow_runs.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["workflow_step_id"], ["workflow_steps.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_workflow_artifacts_workflow_run_id", "workflow_artifacts", ["workflow_run_id"])
        op.create_index("ix_workflow_artifacts_workflow_step_id", "workflow_artifacts", ["workflow_step_id"])
        op.create_index("ix_workflow_artifacts_artifact_type", "workflow_artifacts", ["artifact_type"])
        op.create_index("ix_workflow_artifacts_status", "workflow_artifacts", ["status"])

    # ── Generation logs / notifications ──────────────────────────────────
    if "ai_usage_logs" not in existing_tables:
        op.create_table(
            "ai_usage_logs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("provider", sa.String(length=30), nullable=False),
            sa.Column("model", sa.String(length=80), nullable=False),
            sa.Column("prompt_tokens", sa.Integer(), nullable=True),
            sa.Column("completion_tokens", sa.Integer(), nullable=True),
            sa.Column("total_tokens", sa.Integer(), nullable=True),
            sa.Column("cost_usd", sa.Float(), nullable=True),
            sa.Column("latency_ms", sa.Integer(), nullable=True),
            sa.Column("user", sa.String(length=150), nullable=True),
            sa.Column("purpose", sa.String(length=100), nullable=True),
            sa.Column("project_id", sa.Integer(), nullable=True),
            sa.Column("success", sa.Boolean(), nullable=True),
            sa.Column("error_message", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )

    if "ai_audit_logs" not in existing_tables:
        op.create_table(
            "ai_audit_logs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("action", sa.String(length=50), nullable=False),
            sa.Column("provider", sa.String(length=30), nullable=False),
            sa.Column("model", sa.String(length=80), nullable=False),
            sa.Column("user", sa.String(length=150), nullable=True),
            sa.Column("project_id", sa.Integer(), nullable=True),
            sa.Column("prompt_hash", sa.String(length=64), nullable=True),
            sa.Column("prompt_summary", sa.Text(), nullable=True),
            sa.Column("response_summary", sa.Text(), nullable=True),
            sa.Column("tokens_used", sa.Integer(), nullable=True),
            sa.Column("cost_usd", sa.Float(), nullable=True),
            sa.Column("latency_ms", sa.Integer(), nullable=True),
            sa.Column("success", sa.Boolean(), nullable=True),
            sa.Column("error_message", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )

    if "notifications" not in existing_tables:
        op.create_table(
            "notifications",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=True),
            sa.Column("recipient", sa.String(length=150), nullable=True),
            sa.Column("title", sa.String(length=300), nullable=False),
            sa.Column("message", sa.Text(), nullable=True),
            sa.Column("category", sa.String(length=30), nullable=True),
            sa.Column("severity", sa.String(length=20), nullable=True),
            sa.Column("entity_type", sa.String(length=30), nullable=True),
            sa.Column("entity_id", sa.Integer(), nullable=True),
            sa.Column("is_read", sa.Boolean(), nullable=True),
            sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_notifications_project_id", "notifications", ["project_id"])
        op.create_index("ix_notifications_recipient", "notifications", ["recipient"])


def downgrade():
    bind = op.get_bind()
    existing_tables = set(sa_inspect(bind).get_table_names())

    # children first
    for table in (
        "notifications", "ai_audit_logs", "ai_usage_logs",
        "workflow_artifacts", "workflow_steps", "workflow_runs",
        "test_cases", "checklist_items", "hazards", "requirements",
        "certifiable_elements", "project_documents", "projects",
    ):
        if table in existing_tables:
            op.drop_table(table)
