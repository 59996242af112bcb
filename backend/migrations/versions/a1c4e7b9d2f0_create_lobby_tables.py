"""create user, lobby, lobby_member and lobby_answer tables

Revision ID: a1c4e7b9d2f0
Revises:
Create Date: 2025-09-14 10:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'a1c4e7b9d2f0'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    insp = sa.inspect(bind)
    existing_tables = set(insp.get_table_names())

    if 'user' not in existing_tables:
        op.create_table(
            'user',
            sa.Column('id', sa.String(length=32), primary_key=True),
            sa.Column('username', sa.String(length=64), nullable=False),
            sa.Column('password_hash', sa.String(length=256), nullable=False),
            sa.Column('balance', sa.Integer(), nullable=False, server_default='0'),
        )
        op.create_index('ix_user_username', 'user', ['username'], unique=True)

    if 'lobby' not in existing_tables:
        op.create_table(
            'lobby',
            sa.Column('id', sa.String(length=32), primary_key=True),
            sa.Column('code', sa.String(length=16), nullable=False),
            sa.Column('owner_id', sa.String(length=32), sa.ForeignKey('user.id'), nullable=False),
            sa.Column('event_name', sa.String(length=128), nullable=True),
            sa.Column('buy_in', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('max_players', sa.Integer(), nullable=False, server_default='5'),
            sa.Column('status', sa.String(length=16), nullable=False, server_default='waiting'),
            sa.Column('current_question', sa.Text(), nullable=True),
            sa.Column('question_seq', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('question_published_at', sa.Float(), nullable=True),
            sa.Column('started_at', sa.Float(), nullable=True),
            sa.Column('created_at', sa.Float(), nullable=False),
            sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
            sa.Column('settled_at', sa.Float(), nullable=True),
            sa.Column('settlement', sa.Text(), nullable=True),
        )
        op.create_index('ix_lobby_code', 'lobby', ['code'])
        op.create_index('ix_lobby_status', 'lobby', ['status'])

    if 'lobby_member' not in existing_tables:
        op.create_table(
            'lobby_member',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('lobby_id', sa.String(length=32), sa.ForeignKey('lobby.id'), nullable=False),
            sa.Column('user_id', sa.String(length=32), sa.ForeignKey('user.id'), nullable=False),
            sa.Column('points_earned', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('correct_bets', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('questions_attempted', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('joined_at', sa.Float(), nullable=False),
            sa.Column('left_at', sa.Float(), nullable=True),
            sa.Column('last_question_key', sa.String(length=64), nullable=True),
            sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
            sa.UniqueConstraint('lobby_id', 'user_id', name='uq_lobby_member'),
        )
        op.create_index('ix_lobby_member_lobby_id', 'lobby_member', ['lobby_id'])

    if 'lobby_answer' not in existing_tables:
        op.create_table(
            'lobby_answer',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('lobby_id', sa.String(length=32), sa.ForeignKey('lobby.id'), nullable=False),
            sa.Column('user_id', sa.String(length=32), sa.ForeignKey('user.id'), nullable=False),
            sa.Column('question_key', sa.String(length=64), nullable=False),
            sa.Column('question_text', sa.Text(), nullable=True),
            sa.Column('answer', sa.String(length=8), nullable=False),
            sa.Column('is_correct', sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column('points_delta', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('created_at', sa.Float(), nullable=False),
            sa.UniqueConstraint('lobby_id', 'user_id', 'question_key', name='uq_lobby_answer'),
        )
        op.create_index('ix_lobby_answer_lobby_id', 'lobby_answer', ['lobby_id'])


def downgrade():
    op.drop_index('ix_lobby_answer_lobby_id', table_name='lobby_answer')
    op.drop_table('lobby_answer')
    op.drop_index('ix_lobby_member_lobby_id', table_name='lobby_member')
    op.drop_table('lobby_member')
    op.drop_index('ix_lobby_status', table_name='lobby')
    op.drop_index('ix_lobby_code', table_name='lobby')
    op.drop_table('lobby')
    op.drop_index('ix_user_username', table_name='user')
    op.drop_table('user')
