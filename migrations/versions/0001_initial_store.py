"""initial store collections

Revision ID: 0001_initial_store
Revises:
Create Date: 2026-10-17
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '0001_initial_store'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'entities',
        sa.Column('id', sa.String(length=128), nullable=False),
        sa.Column('type', sa.String(length=32), nullable=True),
        sa.Column('completed', sa.Boolean(), nullable=True),
        sa.Column('priority', sa.String(length=16), nullable=True),
        sa.Column('due_date', sa.String(length=40), nullable=True),
        sa.Column('created_at', sa.String(length=40), nullable=True),
        sa.Column('updated_at', sa.String(length=40), nullable=True),
        sa.Column('doc', sa.JSON(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_entities_type'), 'entities', ['type'])
    op.create_index(op.f('ix_entities_completed'), 'entities', ['completed'])
    op.create_index(op.f('ix_entities_priority'), 'entities', ['priority'])
    op.create_index(op.f('ix_entities_due_date'), 'entities', ['due_date'])

    op.create_table(
        'boards',
        sa.Column('id', sa.String(length=128), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=True),
        sa.Column('created_at', sa.String(length=40), nullable=True),
        sa.Column('doc', sa.JSON(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table(
        'people',
        sa.Column('id', sa.String(length=128), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=True),
        sa.Column('email', sa.String(length=200), nullable=True),
        sa.Column('last_interaction', sa.String(length=40), nullable=True),
        sa.Column('doc', sa.JSON(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_people_name'), 'people', ['name'])
    op.create_index(op.f('ix_people_last_interaction'), 'people', ['last_interaction'])

    op.create_table(
        'tags',
        sa.Column('id', sa.String(length=128), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=True),
        sa.Column('category', sa.String(length=64), nullable=True),
        sa.Column('doc', sa.JSON(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_tags_name'), 'tags', ['name'])

    op.create_table(
        'collections',
        sa.Column('id', sa.String(length=128), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=True),
        sa.Column('type', sa.String(length=32), nullable=True),
        sa.Column('doc', sa.JSON(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table(
        'templates',
        sa.Column('id', sa.String(length=128), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=True),
        sa.Column('category', sa.String(length=64), nullable=True),
        sa.Column('doc', sa.JSON(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table(
        'entity_positions',
        sa.Column('seq', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('id', sa.String(length=300), nullable=False),
        sa.Column('entity_id', sa.String(length=128), nullable=False),
        sa.Column('board_id', sa.String(length=128), nullable=False),
        sa.Column('context', sa.String(length=16), nullable=False),
        sa.Column('row_id', sa.String(length=128), nullable=True),
        sa.Column('column_key', sa.String(length=128), nullable=True),
        sa.Column('sort_order', sa.Integer(), nullable=True),
        sa.Column('doc', sa.JSON(), nullable=False),
        sa.PrimaryKeyConstraint('seq'),
    )
    op.create_index(op.f('ix_entity_positions_id'), 'entity_positions', ['id'], unique=True)
    op.create_index(op.f('ix_entity_positions_entity_id'), 'entity_positions', ['entity_id'])
    op.create_index(op.f('ix_entity_positions_board_id'), 'entity_positions', ['board_id'])
    op.create_index(
        'ix_entity_positions_cell',
        'entity_positions',
        ['board_id', 'context', 'row_id', 'column_key'],
    )

    op.create_table(
        'entity_relationships',
        sa.Column('id', sa.String(length=300), nullable=False),
        sa.Column('entity_id', sa.String(length=128), nullable=False),
        sa.Column('related_id', sa.String(length=128), nullable=False),
        sa.Column('relationship_type', sa.String(length=32), nullable=False),
        sa.Column('created_at', sa.String(length=40), nullable=True),
        sa.Column('doc', sa.JSON(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_entity_relationships_entity_id'), 'entity_relationships', ['entity_id'])
    op.create_index(op.f('ix_entity_relationships_related_id'), 'entity_relationships', ['related_id'])
    op.create_index(
        op.f('ix_entity_relationships_relationship_type'),
        'entity_relationships',
        ['relationship_type'],
    )

    op.create_table(
        'weekly_plans',
        sa.Column('week_key', sa.String(length=32), nullable=False),
        sa.Column('week_start', sa.String(length=40), nullable=True),
        sa.Column('doc', sa.JSON(), nullable=False),
        sa.PrimaryKeyConstraint('week_key'),
    )

    op.create_table(
        'weekly_items',
        sa.Column('id', sa.String(length=200), nullable=False),
        sa.Column('week_key', sa.String(length=32), nullable=False),
        sa.Column('entity_id', sa.String(length=128), nullable=False),
        sa.Column('day', sa.String(length=16), nullable=True),
        sa.Column('sort_order', sa.Integer(), nullable=True),
        sa.Column('doc', sa.JSON(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_weekly_items_week_key'), 'weekly_items', ['week_key'])
    op.create_index(op.f('ix_weekly_items_entity_id'), 'weekly_items', ['entity_id'])

    op.create_table(
        'app_metadata',
        sa.Column('key', sa.String(length=64), nullable=False),
        sa.Column('last_updated', sa.String(length=40), nullable=True),
        sa.Column('doc', sa.JSON(), nullable=False),
        sa.PrimaryKeyConstraint('key'),
    )


def downgrade() -> None:
    op.drop_table('app_metadata')
    op.drop_index(op.f('ix_weekly_items_entity_id'), table_name='weekly_items')
    op.drop_index(op.f('ix_weekly_items_week_key'), table_name='weekly_items')
    op.drop_table('weekly_items')
    op.drop_table('weekly_plans')
    op.drop_index(op.f('ix_entity_relationships_relationship_type'), table_name='entity_relationships')
    op.drop_index(op.f('ix_entity_relationships_related_id'), table_name='entity_relationships')
    op.drop_index(op.f('ix_entity_relationships_entity_id'), table_name='entity_relationships')
    op.drop_table('entity_relationships')
    op.drop_index('ix_entity_positions_cell', table_name='entity_positions')
    op.drop_index(op.f('ix_entity_positions_board_id'), table_name='entity_positions')
    op.drop_index(op.f('ix_entity_positions_entity_id'), table_name='entity_positions')
    op.drop_index(op.f('ix_entity_positions_id'), table_name='entity_positions')
    op.drop_table('entity_positions')
    op.drop_table('templates')
    op.drop_table('collections')
    op.drop_index(op.f('ix_tags_name'), table_name='tags')
    op.drop_table('tags')
    op.drop_index(op.f('ix_people_last_interaction'), table_name='people')
    op.drop_index(op.f('ix_people_name'), table_name='people')
    op.drop_table('people')
    op.drop_table('boards')
    op.drop_index(op.f('ix_entities_due_date'), table_name='entities')
    op.drop_index(op.f('ix_entities_priority'), table_name='entities')
    op.drop_index(op.f('ix_entities_completed'), table_name='entities')
    op.drop_index(op.f('ix_entities_type'), table_name='entities')
    op.drop_table('entities')
