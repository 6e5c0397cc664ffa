"""create vehicles and vehicle_images

Revision ID: 3d7e91c0a6b2
Revises:
Create Date: 2026-10-19 09:12:31.204117

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


# revision identifiers, used by Alembic.
revision = '3d7e91c0a6b2'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    inspector = inspect(bind)
    tables = set(inspector.get_table_names())
    created_tables = set()

    def _log(message: str):
        print(f"[MIGRATION] {message}")

    def _ensure_table(name: str, create_fn):
        if name in tables:
            _log(f"{name} already exists; skipping create_table")
            return False
        create_fn()
        tables.add(name)
        created_tables.add(name)
        _log(f"{name} created")
        return True

    def _ensure_indexes(table_name: str, index_specs: list[tuple[str, list[str], bool]]):
        if table_name not in tables:
            return
        existing = set() if table_name in created_tables else {
            idx.get("name") for idx in inspector.get_indexes(table_name)
        }
        for index_name, columns, unique in index_specs:
            if index_name in existing:
                _log(f"{table_name}.{index_name} already exists; skipping index")
                continue
            op.create_index(index_name, table_name, columns, unique=unique)
            _log(f"{table_name}.{index_name} created")

    _ensure_table(
        "vehicles",
        lambda: op.create_table(
            "vehicles",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("crmid", sa.String(length=128), nullable=True),
            sa.Column("external_id", sa.String(length=128), nullable=True),
            sa.Column("is_published", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("slug", sa.String(length=255), nullable=True),
            sa.Column("title", sa.String(length=255), nullable=True),
            sa.Column("brand", sa.String(length=120), nullable=True),
            sa.Column("model", sa.String(length=120), nullable=True),
            sa.Column("year", sa.Integer(), nullable=True),
            sa.Column("price", sa.Integer(), nullable=True),
            sa.Column("km", sa.Integer(), nullable=True),
            sa.Column("gear_type", sa.String(length=50), nullable=True),
            sa.Column("fuel_type", sa.String(length=50), nullable=True),
            sa.Column("categories", sa.JSON(), nullable=False),
            sa.Column("hand", sa.Integer(), nullable=True),
            sa.Column("condition", sa.String(length=50), nullable=True),
            sa.Column("main_image_url", sa.Text(), nullable=True),
            sa.Column("short_description", sa.Text(), nullable=True),
            sa.Column("raw_data", sa.JSON(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
            sa.PrimaryKeyConstraint("id"),
        ),
    )
    _ensure_indexes(
        "vehicles",
        [
            (op.f("ix_vehicles_crmid"), ["crmid"], True),
            (op.f("ix_vehicles_is_published"), ["is_published"], False),
            (op.f("ix_vehicles_slug"), ["slug"], False),
            (op.f("ix_vehicles_updated_at"), ["updated_at"], False),
        ],
    )

    _ensure_table(
        "vehicle_images",
        lambda: op.create_table(
            "vehicle_images",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("vehicle_id", sa.String(length=36), nullable=False),
            sa.Column("image_url", sa.Text(), nullable=False),
            sa.Column("position", sa.Integer(), nullable=False),
            sa.Column("alt_text", sa.String(length=255), nullable=True),
            sa.Column("uploaded_at", sa.DateTime(), nullable=False),
            sa.ForeignKeyConstraint(["vehicle_id"], ["vehicles.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("vehicle_id", "position", name="uq_vehicle_image_position"),
            sa.CheckConstraint("position >= 1", name="ck_vehicle_image_position_min"),
        ),
    )
    _ensure_indexes(
        "vehicle_images",
        [
            (op.f("ix_vehicle_images_vehicle_id"), ["vehicle_id"], False),
        ],
    )


def downgrade():
    with op.batch_alter_table('vehicle_images', schema=None) as batch_op:
        batch_op.drop_index(batch_op.f('ix_vehicle_images_vehicle_id'))

    op.drop_table('vehicle_images')
    with op.batch_alter_table('vehicles', schema=None) as batch_op:
        batch_op.drop_index(batch_op.f('ix_vehicles_updated_at'))
        batch_op.drop_index(batch_op.f('ix_vehicles_slug'))
        batch_op.drop_index(batch_op.f('ix_vehicles_is_published'))
        batch_op.drop_index(batch_op.f('ix_vehicles_crmid'))

    op.drop_table('vehicles')
