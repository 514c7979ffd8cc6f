from alembic import op
import sqlalchemy as sa

revision = '0001_initial'
down_revision = None

def upgrade():
    op.create_table('accounts',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('username', sa.String(), nullable=False, unique=True),
        sa.Column('password_hash', sa.String(), nullable=False),
        sa.Column('role', sa.String(), nullable=False, server_default='standard'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_accounts_username', 'accounts', ['username'])
    op.create_table('sessions',
        sa.Column('token', sa.String(), primary_key=True),
        sa.Column('username', sa.String(), sa.ForeignKey('accounts.username', ondelete='CASCADE'), nullable=False),
        sa.Column('issued_at', sa.DateTime(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_sessions_username', 'sessions', ['username'])
    op.create_index('ix_sessions_expires_at', 'sessions', ['expires_at'])
    op.create_table('watch_progress',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('username', sa.String(), sa.ForeignKey('accounts.username', ondelete='CASCADE'), nullable=False),
        sa.Column('media_type', sa.String(), nullable=False),
        sa.Column('title_id', sa.Integer(), nullable=False),
        sa.Column('season', sa.Integer(), nullable=False, server_default='-1'),
        sa.Column('episode', sa.Integer(), nullable=False, server_default='-1'),
        sa.Column('position', sa.Float(), nullable=False, server_default='0'),
        sa.Column('duration', sa.Float(), nullable=True),
        sa.Column('completed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('title', sa.String(), nullable=True),
        sa.Column('poster_path', sa.String(), nullable=True),
        sa.Column('episode_title', sa.String(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('username', 'media_type', 'title_id', 'season', 'episode', name='uq_watch_progress_key'),
    )
    op.create_index('ix_watch_progress_updated_at', 'watch_progress', ['updated_at'])
    op.create_table('cache',
        sa.Column('key', sa.String(), primary_key=True),
        sa.Column('value', sa.Text(), nullable=True),
        sa.Column('timestamp', sa.DateTime(), nullable=True),
    )

def downgrade():
    op.drop_table('cache')
    op.drop_table('watch_progress')
    op.drop_table('sessions')
    op.drop_table('accounts')
