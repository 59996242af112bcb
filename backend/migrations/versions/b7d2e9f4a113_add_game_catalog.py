"""add game catalog and lobby.game_id

Revision ID: b7d2e9f4a113
Revises: a1c4e7b9d2f0
Create Date: 2025-09-21 09:30:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'b7d2e9f4a113'
down_revision = 'a1c4e7b9d2f0'
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    insp = sa.inspect(bind)
    existing_tables = set(insp.get_table_names())

    if 'game' not in existing_tables:
        op.create_table(
            'game',
            sa.Column('id', sa.String(length=32), primary_key=True),
            sa.Column('league', sa.String(length=32), nullable=False),
            sa.Column('home', sa.String(length=64), nullable=False),
            sa.Column('away', sa.String(length=64), nullable=False),
            sa.Column('start_time', sa.Float(), nullable=False),
        )
        op.create_index('ix_game_start_time', 'game', ['start_time'])

    lobby_cols = {c['name'] for c in insp.get_columns('lobby')}
    if 'game_id' not in lobby_cols:
        # Batch mode so SQLite can add the foreign key
        with op.batch_alter_table('lobby') as batch_op:
            batch_op.add_column(sa.Column('game_id', sa.String(length=32), nullable=True))
            batch_op.create_foreign_key('fk_lobby_game_id', 'game', ['game_id'], ['id'])
            batch_op.create_index('ix_lobby_game_id', ['game_id'])


def downgrade():
    bind = op.get_bind()
    insp = sa.inspect(bind)

    lobby_cols = {c['name'] for c in insp.get_columns('lobby')}
    if 'game_id' in lobby_cols:
        with op.batch_alter_table('lobby') as batch_op:
            batch_op.drop_index('ix_lobby_game_id')
            batch_op.drop_constraint('fk_lobby_game_id', type_='foreignkey')
            batch_op.drop_column('game_id')

    if 'game' in set(insp.get_table_names()):
        op.drop_index('ix_game_start_time', table_name='game')
        op.drop_table('game')
