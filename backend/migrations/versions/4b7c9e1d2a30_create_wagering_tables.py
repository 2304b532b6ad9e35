"""create user, match, transaction and notification tables

Revision ID: 4b7c9e1d2a30
Revises:
Create Date: 2026-10-19 09:30:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '4b7c9e1d2a30'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    existing_tables = set(sa.inspect(bind).get_table_names())

    if 'user' not in existing_tables:
        op.create_table(
            'user',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('username', sa.String(length=64), nullable=False),
            sa.Column('password_hash', sa.String(length=256), nullable=True),
            sa.Column('balance', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('games_played', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('games_won', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('status', sa.String(length=16), nullable=False, server_default='active'),
            sa.Column('is_admin', sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column('is_bot', sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
            sa.CheckConstraint('balance >= 0', name='ck_user_balance_non_negative'),
        )
        op.create_index('ix_user_username', 'user', ['username'], unique=True)

    if 'match' not in existing_tables:
        op.create_table(
            'match',
            sa.Column('id', sa.String(length=40), primary_key=True),
            sa.Column('board', sa.Text(), nullable=False),
            sa.Column('current_turn', sa.String(length=1), nullable=False, server_default='X'),
            sa.Column('player_x_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=False),
            sa.Column('player_o_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=True),
            sa.Column('invited_user_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=True),
            sa.Column('status', sa.String(length=16), nullable=False, server_default='waiting'),
            sa.Column('bet_amount', sa.Integer(), nullable=False),
            sa.Column('pot', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('stakes', sa.Text(), nullable=False, server_default='{}'),
            sa.Column('winner', sa.String(length=1), nullable=True),
            sa.Column('is_bot_match', sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
            sa.Column('ended_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('settlement_status', sa.String(length=16), nullable=False, server_default='pending'),
            sa.Column('settled_at', sa.DateTime(timezone=True), nullable=True),
        )

    if 'transaction' not in existing_tables:
        op.create_table(
            'transaction',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('user_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=False),
            sa.Column('type', sa.String(length=16), nullable=False),
            sa.Column('amount', sa.Integer(), nullable=False),
            sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
            sa.Column('match_id', sa.String(length=40), sa.ForeignKey('match.id'), nullable=True),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
            sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
            sa.CheckConstraint('amount > 0', name='ck_transaction_amount_positive'),
        )
        op.create_index('ix_transaction_user_id', 'transaction', ['user_id'])
        op.create_index('ix_transaction_match_id', 'transaction', ['match_id'])

    if 'notification' not in existing_tables:
        op.create_table(
            'notification',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('type', sa.String(length=32), nullable=False),
            sa.Column('user_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=False),
            sa.Column('transaction_id', sa.Integer(), sa.ForeignKey('transaction.id'), nullable=True),
            sa.Column('amount', sa.Integer(), nullable=True),
            sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
            sa.Column('message', sa.Text(), nullable=False, server_default=''),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        )


def downgrade():
    op.drop_table('notification')
    op.drop_index('ix_transaction_match_id', table_name='transaction')
    op.drop_index('ix_transaction_user_id', table_name='transaction')
    op.drop_table('transaction')
    op.drop_table('match')
    op.drop_index('ix_user_username', table_name='user')
    op.drop_table('user')
