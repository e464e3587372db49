"""create users, participants, events, scores and game tables

Revision ID: a1c4e7f20b31
Revises:
Create Date: 2025-05-02 19:33:00

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'a1c4e7f20b31'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'user',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('password_hash', sa.String(length=256), nullable=False),
    )
    op.create_index('ix_user_email', 'user', ['email'], unique=True)

    op.create_table(
        'participant',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=True, unique=True),
        sa.Column('name', sa.String(length=128), nullable=True),
        sa.Column('email', sa.String(length=255), nullable=False, unique=True),
        sa.Column('avatar_url', sa.Text(), nullable=True),
        sa.Column('is_admin', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )

    # No seed row: the minigame event name is configurable, so it is created
    # by `flask seed-events` or on the first finished game
    op.create_table(
        'event',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=128), nullable=False, unique=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('display_order', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        'score',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('participant_id', sa.Integer(), sa.ForeignKey('participant.id'), nullable=False),
        sa.Column('event_id', sa.Integer(), sa.ForeignKey('event.id'), nullable=False),
        sa.Column('rank', sa.Integer(), nullable=False),
        sa.Column('points', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint('participant_id', 'event_id', name='uq_score_participant_event'),
    )

    op.create_table(
        'game',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='waiting'),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('finished_at', sa.DateTime(), nullable=True),
        sa.Column('next_transition_at', sa.Float(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('reconciled_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_game_status', 'game', ['status'])

    op.create_table(
        'game_participant',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('game_id', sa.Integer(), sa.ForeignKey('game.id'), nullable=False),
        sa.Column('participant_id', sa.Integer(), sa.ForeignKey('participant.id'), nullable=False),
        sa.Column('tap_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('rank', sa.Integer(), nullable=True),
        sa.Column('score_awarded', sa.Integer(), nullable=True),
        sa.Column('joined_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint('game_id', 'participant_id', name='uq_game_participant'),
    )
    op.create_index('ix_game_participant_game_id', 'game_participant', ['game_id'])


def downgrade():
    op.drop_index('ix_game_participant_game_id', table_name='game_participant')
    op.drop_table('game_participant')
    op.drop_index('ix_game_status', table_name='game')
    op.drop_table('game')
    op.drop_table('score')
    op.drop_table('event')
    op.drop_table('participant')
    op.drop_index('ix_user_email', table_name='user')
    op.drop_table('user')
