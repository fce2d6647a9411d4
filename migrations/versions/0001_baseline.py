"""Baseline schema: traces, eval runs/scores, prompt packs, deployments, behavior state."""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "0001_baseline"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "traces",
        sa.Column("trace_id", sa.String(), primary_key=True),
        sa.Column("timestamp", sa.String(), nullable=False),
        sa.Column("created_at", sa.BigInteger(), nullable=False),
        sa.Column("chat_id", sa.String(), nullable=False),
        sa.Column("group_folder", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=True),
        sa.Column("input_text", sa.Text(), nullable=False),
        sa.Column("output_text", sa.Text(), nullable=True),
        sa.Column("model_id", sa.String(), nullable=False),
        sa.Column("prompt_pack_versions", sa.JSON(), nullable=True),
        sa.Column("memory_summary", sa.Text(), nullable=True),
        sa.Column("memory_facts", sa.JSON(), nullable=True),
        sa.Column("memory_recall", sa.JSON(), nullable=True),
        sa.Column("session_recall", sa.JSON(), nullable=True),
        sa.Column("tool_calls", sa.JSON(), nullable=True),
        sa.Column("latency_ms", sa.Integer(), nullable=True),
        sa.Column("tokens_prompt", sa.Integer(), nullable=True),
        sa.Column("tokens_completion", sa.Integer(), nullable=True),
        sa.Column("cost_total_usd", sa.Float(), nullable=True),
        sa.Column("error_code", sa.String(), nullable=True),
        sa.Column("source", sa.String(), nullable=True),
    )
    op.create_index("ix_traces_created_at", "traces", ["created_at"])

    op.create_table(
        "eval_runs",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("rubric", sa.String(), nullable=False),
        sa.Column("model_id", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("trace_count", sa.Integer(), nullable=False),
        sa.Column("cost_usd", sa.Float(), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("finished_at", sa.DateTime(), nullable=True),
    )

    op.create_table(
        "eval_scores",
        sa.Column("trace_id", sa.String(), sa.ForeignKey("traces.trace_id"), primary_key=True),
        sa.Column("metric", sa.String(), primary_key=True),
        sa.Column("score", sa.Float(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("run_id", sa.String(), sa.ForeignKey("eval_runs.id"), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
    )

    op.create_table(
        "prompt_packs",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("behavior", sa.String(), nullable=False),
        sa.Column("version", sa.String(), nullable=False),
        sa.Column("pack_name", sa.String(), nullable=False),
        sa.Column("instructions", sa.Text(), nullable=False),
        sa.Column("demos", sa.JSON(), nullable=True),
        sa.Column("metric", sa.JSON(), nullable=True),
        sa.Column("score", sa.Float(), nullable=True),
        sa.Column("pack_metadata", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.UniqueConstraint("behavior", "version", name="uq_prompt_packs_behavior_version"),
    )
    op.create_index("ix_prompt_packs_behavior", "prompt_packs", ["behavior"])

    op.create_table(
        "prompt_deployments",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("behavior", sa.String(), nullable=False),
        sa.Column("pack_version", sa.String(), nullable=False),
        sa.Column("target_path", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("canary_percent", sa.Integer(), nullable=False),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.ForeignKeyConstraint(
            ["behavior", "pack_version"],
            ["prompt_packs.behavior", "prompt_packs.version"],
            name="fk_prompt_deployments_pack",
        ),
    )
    op.create_index("ix_prompt_deployments_behavior", "prompt_deployments", ["behavior"])

    op.create_table(
        "behavior_states",
        sa.Column("behavior", sa.String(), primary_key=True),
        sa.Column("active_version", sa.String(), nullable=True),
        sa.Column("canary_version", sa.String(), nullable=True),
        sa.Column("canary_since", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
    )


def downgrade() -> None:
    op.drop_table("behavior_states")
    op.drop_index("ix_prompt_deployments_behavior", table_name="prompt_deployments")
    op.drop_table("prompt_deployments")
    op.drop_index("ix_prompt_packs_behavior", table_name="prompt_packs")
    op.drop_table("prompt_packs")
    op.drop_table("eval_scores")
    op.drop_table("eval_runs")
    op.drop_index("ix_traces_created_at", table_name="traces")
    op.drop_table("traces")
