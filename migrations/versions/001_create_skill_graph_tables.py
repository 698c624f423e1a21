"""Create skill graph tables with HNSW and GIN indexes.

Revision ID: 001
Revises:
Create Date: 2026-10-12 09:30:00.000000

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import ARRAY

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create the catalog, embedding, community and analytics tables.

    Creates:
    - skills table (catalog, owned by the content-management side)
    - skill_embeddings table with an HNSW cosine index on the vector
    - skill_communities table, one row per (tenant, skill)
    - usage_events and search_queries tables
    - generated search_vector column on skills with a GIN index
    """
    op.execute("CREATE EXTENSION IF NOT EXISTS vector;")

    op.create_table(
        'skills',
        sa.Column('id', sa.String(64), nullable=False),
        sa.Column('tenant_id', sa.String(64), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('slug', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=False, server_default=''),
        sa.Column('category', sa.String(100), nullable=True),
        sa.Column('tags', ARRAY(sa.String()), nullable=False, server_default='{}'),
        sa.Column('visibility', sa.String(32), nullable=False, server_default='tenant'),
        sa.Column('status', sa.String(32), nullable=False, server_default='draft'),
        sa.Column('author_id', sa.String(64), nullable=True),
        sa.Column('total_uses', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('average_rating', sa.Float(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_skills_tenant_id', 'skills', ['tenant_id'])
    op.create_index('ix_skills_author_id', 'skills', ['author_id'])
    op.create_index('uq_skills_tenant_slug', 'skills', ['tenant_id', 'slug'], unique=True)
    op.create_index('idx_skills_tenant_status', 'skills', ['tenant_id', 'status'])
    op.create_index('idx_skills_visibility', 'skills', ['visibility'])

    # array_to_string is only STABLE; generated columns need IMMUTABLE pieces
    op.execute(
        """
        CREATE OR REPLACE FUNCTION skill_tags_text(tags text[])
        RETURNS text
        LANGUAGE sql
        IMMUTABLE PARALLEL SAFE
        AS $$ SELECT coalesce(array_to_string(tags, ' '), '') $$;
        """
    )
    op.execute(
        """
        ALTER TABLE skills
        ADD COLUMN search_vector tsvector GENERATED ALWAYS AS (
            setweight(to_tsvector('english'::regconfig, coalesce(name, '')), 'A') ||
            setweight(to_tsvector('english'::regconfig, coalesce(description, '')), 'B') ||
            setweight(to_tsvector('english'::regconfig, skill_tags_text(tags)), 'C')
        ) STORED;
        """
    )
    op.execute("CREATE INDEX idx_skills_search_vector ON skills USING gin (search_vector);")

    op.create_table(
        'skill_embeddings',
        sa.Column('id', sa.String(64), nullable=False),
        sa.Column('skill_id', sa.String(64), nullable=False),
        sa.Column('tenant_id', sa.String(64), nullable=False),
        sa.Column('embedding', sa.Text(), nullable=False),  # Altered to vector below
        sa.Column('model_name', sa.String(100), nullable=False),
        sa.Column('model_version', sa.String(50), nullable=True),
        sa.Column('dimensions', sa.Integer(), nullable=False),
        sa.Column('input_hash', sa.String(64), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(
            ['skill_id'], ['skills.id'],
            name='fk_skill_embeddings_skill_id',
            ondelete='CASCADE'
        ),
    )
    op.execute(
        "ALTER TABLE skill_embeddings "
        "ALTER COLUMN embedding TYPE vector(768) USING embedding::vector(768);"
    )
    op.create_index('uq_skill_embeddings_skill', 'skill_embeddings', ['skill_id'], unique=True)
    op.create_index('ix_skill_embeddings_tenant_id', 'skill_embeddings', ['tenant_id'])

    # m=16 links per node, ef_construction=64 candidates during build
    op.execute(
        """
        CREATE INDEX idx_skill_embeddings_embedding_hnsw
        ON skill_embeddings
        USING hnsw (embedding vector_cosine_ops)
        WITH (m = 16, ef_construction = 64);
        """
    )

    op.create_table(
        'skill_communities',
        sa.Column('id', sa.String(64), nullable=False),
        sa.Column('tenant_id', sa.String(64), nullable=False),
        sa.Column('skill_id', sa.String(64), nullable=False),
        sa.Column('community_id', sa.Integer(), nullable=False),
        sa.Column('modularity', sa.Float(), nullable=False),
        sa.Column('run_id', sa.String(64), nullable=False),
        sa.Column('detected_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('community_label', sa.String(255), nullable=True),
        sa.Column('community_description', sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(
            ['skill_id'], ['skills.id'],
            name='fk_skill_communities_skill_id',
            ondelete='CASCADE'
        ),
    )
    op.create_index(
        'uq_skill_communities_tenant_skill',
        'skill_communities',
        ['tenant_id', 'skill_id'],
        unique=True,
    )
    op.create_index(
        'idx_skill_communities_tenant_community',
        'skill_communities',
        ['tenant_id', 'community_id'],
    )

    op.create_table(
        'usage_events',
        sa.Column('id', sa.String(64), nullable=False),
        sa.Column('skill_id', sa.String(64), nullable=False),
        sa.Column('user_id', sa.String(64), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(
            ['skill_id'], ['skills.id'],
            name='fk_usage_events_skill_id',
            ondelete='CASCADE'
        ),
    )
    op.create_index('ix_usage_events_skill_id', 'usage_events', ['skill_id'])
    op.create_index('ix_usage_events_user_id', 'usage_events', ['user_id'])

    op.create_table(
        'search_queries',
        sa.Column('id', sa.String(64), nullable=False),
        sa.Column('tenant_id', sa.String(64), nullable=False),
        sa.Column('user_id', sa.String(64), nullable=True),
        sa.Column('query', sa.Text(), nullable=False),
        sa.Column('normalized_query', sa.Text(), nullable=False),
        sa.Column('result_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('search_type', sa.String(20), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(
        'idx_search_queries_tenant_created',
        'search_queries',
        ['tenant_id', 'created_at'],
    )


def downgrade() -> None:
    """Drop the skill graph tables and their indexes."""
    op.drop_index('idx_search_queries_tenant_created', table_name='search_queries')
    op.drop_table('search_queries')

    op.drop_index('ix_usage_events_user_id', table_name='usage_events')
    op.drop_index('ix_usage_events_skill_id', table_name='usage_events')
    op.drop_table('usage_events')

    op.drop_index('idx_skill_communities_tenant_community', table_name='skill_communities')
    op.drop_index('uq_skill_communities_tenant_skill', table_name='skill_communities')
    op.drop_table('skill_communities')

    op.execute("DROP INDEX IF EXISTS idx_skill_embeddings_embedding_hnsw;")
    op.drop_index('ix_skill_embeddings_tenant_id', table_name='skill_embeddings')
    op.drop_index('uq_skill_embeddings_skill', table_name='skill_embeddings')
    op.drop_table('skill_embeddings')

    op.execute("DROP INDEX IF EXISTS idx_skills_search_vector;")
    op.drop_index('idx_skills_visibility', table_name='skills')
    op.drop_index('idx_skills_tenant_status', table_name='skills')
    op.drop_index('uq_skills_tenant_slug', table_name='skills')
    op.drop_index('ix_skills_author_id', table_name='skills')
    op.drop_index('ix_skills_tenant_id', table_name='skills')
    op.drop_table('skills')
    op.execute("DROP FUNCTION IF EXISTS skill_tags_text(text[]);")
