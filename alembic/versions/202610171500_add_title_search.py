"""casefolded title column for search and ordering

Revision ID: 202610171500
Revises: 202610170900
Create Date: 2026-10-17 15:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202610171500"
down_revision = "202610170900"
branch_labels = None
depends_on = None


def upgrade():
    with op.batch_alter_table("expenses") as batch_op:
        batch_op.add_column(
            sa.Column(
                "title_search", sa.String(length=300), nullable=False, server_default=""
            )
        )

    conn = op.get_bind()
    expenses = sa.table(
        "expenses",
        sa.column("id", sa.String),
        sa.column("title", sa.String),
        sa.column("title_search", sa.String),
    )
    for expense_id, title in conn.execute(
        sa.select(expenses.c.id, expenses.c.title)
    ).all():
        conn.execute(
            expenses.update()
            .where(expenses.c.id == expense_id)
            .values(title_search=(title or "").casefold())
        )


def downgrade():
    with op.batch_alter_table("expenses") as batch_op:
        batch_op.drop_column("title_search")
