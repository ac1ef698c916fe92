"""Initial schema: voters, candidates, elections and their ledger mirror

Revision ID: 3f1a9c2e7b10
Revises:
Create Date: 2025-06-08 23:24:30.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '3f1a9c2e7b10'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table('voters',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('national_id', sa.String(length=20), nullable=False),
        sa.Column('first_name', sa.String(length=100), nullable=False),
        sa.Column('last_name', sa.String(length=100), nullable=False),
        sa.Column('wallet', sa.String(length=100), nullable=False),
        sa.Column('password_hash', sa.String(length=200), nullable=False),
        sa.Column('role', sa.String(length=20), nullable=False),
        sa.Column('nonce', sa.String(length=100), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('national_id'),
        sa.UniqueConstraint('wallet')
    )

    op.create_table('candidates',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('first_name', sa.String(length=100), nullable=False),
        sa.Column('last_name', sa.String(length=100), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )

    op.create_table('elections',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('title', sa.String(length=200), nullable=False),
        sa.Column('on_chain_id', sa.BigInteger(), nullable=False),
        sa.Column('started', sa.Boolean(), nullable=False),
        sa.Column('finalized', sa.Boolean(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('on_chain_id')
    )

    op.create_table('election_candidates',
        sa.Column('election_id', sa.Integer(), nullable=False),
        sa.Column('candidate_id', sa.Integer(), nullable=False),
        sa.Column('candidate_index', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['election_id'], ['elections.id']),
        sa.ForeignKeyConstraint(['candidate_id'], ['candidates.id']),
        sa.PrimaryKeyConstraint('election_id', 'candidate_id'),
        sa.UniqueConstraint('election_id', 'candidate_index', name='uq_election_candidate_index')
    )

    op.create_table('votes',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('election_id', sa.Integer(), nullable=False),
        sa.Column('timestamp', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['election_id'], ['elections.id']),
        sa.PrimaryKeyConstraint('id')
    )

    op.create_table('election_signatures',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('on_chain_id', sa.BigInteger(), nullable=False),
        sa.Column('integrity_hash', sa.String(length=128), nullable=False),
        sa.Column('observer_name', sa.String(length=200), nullable=False),
        sa.Column('observer_public_key', sa.String(length=200), nullable=False),
        sa.Column('observer_signature', sa.Text(), nullable=False),
        sa.Column('signed_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('on_chain_id', 'integrity_hash', 'observer_public_key',
                            name='uq_signature_election_hash_observer')
    )


def downgrade():
    op.drop_table('election_signatures')
    op.drop_table('votes')
    op.drop_table('election_candidates')
    op.drop_table('elections')
    op.drop_table('candidates')
    op.drop_table('voters')
