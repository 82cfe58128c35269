"""Create asset processing pipeline tables

Tables added:
- assets: Asset record with thumbnail state and shared metadata document
- asset_versions: Immutable file versions (one current per asset)
- brand_compliance_models / brand_compliance_model_versions: Scoring rules
- brand_compliance_scores: One score per (asset, brand)
- system_incidents: Deduplicated operational incidents

Revision ID: pipeline_tables
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = 'pipeline_tables'
down_revision = None
branch_labels = None
depends_on = None

UUID = postgresql.UUID(as_uuid=True)


def upgrade() -> None:
    """Create pipeline tables and indexes."""

    # ========================================================================
    # Table: assets
    # ========================================================================
    op.create_table(
        'assets',
        sa.Column('id', UUID, primary_key=True),
        sa.Column('tenant_id', UUID, nullable=False),
        sa.Column('brand_id', UUID, nullable=True),

        sa.Column('title', sa.String(500), nullable=True),
        sa.Column('original_filename', sa.String(500), nullable=True),
        sa.Column('mime_type', sa.String(255), nullable=True),
        sa.Column('storage_path', sa.String(1024), nullable=True),
        sa.Column('file_size', sa.Integer(), nullable=True),
        sa.Column('width', sa.Integer(), nullable=True),
        sa.Column('height', sa.Integer(), nullable=True),

        # Thumbnail state machine
        sa.Column('thumbnail_status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('thumbnail_started_at', sa.DateTime(), nullable=True),
        sa.Column('thumbnail_error', sa.Text(), nullable=True),
        sa.Column('thumbnail_retry_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('thumbnail_last_retry_at', sa.DateTime(), nullable=True),

        sa.Column('metadata', sa.JSON(), nullable=False, server_default='{}'),

        sa.Column('created_at', sa.DateTime(), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
    )
    op.create_index('ix_assets_tenant_id', 'assets', ['tenant_id'])
    op.create_index('ix_assets_brand_id', 'assets', ['brand_id'])
    op.create_index('ix_assets_thumbnail_status', 'assets', ['thumbnail_status'])
    op.create_index('ix_assets_tenant_created', 'assets', ['tenant_id', 'created_at'])
    op.create_index('ix_assets_thumbnail_status_started', 'assets', ['thumbnail_status', 'thumbnail_started_at'])

    # ========================================================================
    # Table: asset_versions
    # ========================================================================
    op.create_table(
        'asset_versions',
        sa.Column('id', UUID, primary_key=True),
        sa.Column('asset_id', UUID, sa.ForeignKey('assets.id', ondelete='CASCADE'), nullable=False),
        sa.Column('version_number', sa.Integer(), nullable=False),
        sa.Column('file_path', sa.String(1024), nullable=False),
        sa.Column('checksum', sa.String(64), nullable=True),
        sa.Column('file_size', sa.Integer(), nullable=True),
        sa.Column('mime_type', sa.String(255), nullable=True),
        sa.Column('width', sa.Integer(), nullable=True),
        sa.Column('height', sa.Integer(), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=False, server_default='{}'),
        sa.Column('pipeline_status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('is_current', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.UniqueConstraint('asset_id', 'version_number', name='uq_asset_versions_asset_number'),
    )
    op.create_index('ix_asset_versions_asset_id', 'asset_versions', ['asset_id'])
    op.create_index(
        'ix_asset_versions_one_current', 'asset_versions', ['asset_id'],
        unique=True, postgresql_where=sa.text('is_current'),
    )

    # ========================================================================
    # Tables: brand compliance models
    # ========================================================================
    op.create_table(
        'brand_compliance_models',
        sa.Column('id', UUID, primary_key=True),
        sa.Column('brand_id', UUID, nullable=False, unique=True),
        sa.Column('is_enabled', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('active_version_id', UUID, nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
    )
    op.create_index('ix_brand_compliance_models_brand_id', 'brand_compliance_models', ['brand_id'])

    op.create_table(
        'brand_compliance_model_versions',
        sa.Column('id', UUID, primary_key=True),
        sa.Column('model_id', UUID,
                  sa.ForeignKey('brand_compliance_models.id', ondelete='CASCADE'),
                  nullable=False),
        sa.Column('version_number', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='draft'),
        sa.Column('model_payload', sa.JSON(), nullable=False, server_default='{}'),
        sa.Column('created_at', sa.DateTime(), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.UniqueConstraint('model_id', 'version_number', name='uq_compliance_model_versions_number'),
    )
    op.create_index('ix_brand_compliance_model_versions_model_id', 'brand_compliance_model_versions', ['model_id'])

    op.create_foreign_key(
        'fk_brand_compliance_models_active_version',
        'brand_compliance_models', 'brand_compliance_model_versions',
        ['active_version_id'], ['id'], ondelete='SET NULL',
    )

    # ========================================================================
    # Table: brand_compliance_scores
    # ========================================================================
    op.create_table(
        'brand_compliance_scores',
        sa.Column('id', UUID, primary_key=True),
        sa.Column('asset_id', UUID, sa.ForeignKey('assets.id', ondelete='CASCADE'), nullable=False),
        sa.Column('brand_id', UUID, nullable=False),
        sa.Column('model_version_id', UUID,
                  sa.ForeignKey('brand_compliance_model_versions.id', ondelete='SET NULL'),
                  nullable=True),
        sa.Column('evaluation_status', sa.String(20), nullable=False),
        sa.Column('overall_score', sa.Integer(), nullable=True),
        sa.Column('color_score', sa.Integer(), nullable=True),
        sa.Column('typography_score', sa.Integer(), nullable=True),
        sa.Column('tone_score', sa.Integer(), nullable=True),
        sa.Column('imagery_score', sa.Integer(), nullable=True),
        sa.Column('breakdown_payload', sa.JSON(), nullable=False, server_default='{}'),
        sa.Column('created_at', sa.DateTime(), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.UniqueConstraint('asset_id', 'brand_id', name='uq_compliance_scores_asset_brand'),
    )
    op.create_index('ix_brand_compliance_scores_asset_id', 'brand_compliance_scores', ['asset_id'])
    op.create_index('ix_brand_compliance_scores_brand_id', 'brand_compliance_scores', ['brand_id'])

    # ========================================================================
    # Table: system_incidents
    # ========================================================================
    op.create_table(
        'system_incidents',
        sa.Column('id', UUID, primary_key=True),
        sa.Column('source_type', sa.String(50), nullable=False),
        sa.Column('source_id', sa.String(255), nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('message', sa.Text(), nullable=True),
        sa.Column('severity', sa.String(20), nullable=False, server_default='warning'),
        sa.Column('metadata', sa.JSON(), nullable=False, server_default='{}'),
        sa.Column('created_at', sa.DateTime(), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('resolved_at', sa.DateTime(), nullable=True),
        sa.Column('auto_resolved', sa.Boolean(), nullable=False, server_default=sa.false()),
    )
    op.create_index(
        'uq_system_incidents_open',
        'system_incidents',
        ['source_type', 'source_id', 'title'],
        unique=True,
        postgresql_where=sa.text('resolved_at IS NULL'),
    )
    op.create_index('ix_system_incidents_unresolved', 'system_incidents', ['resolved_at'])


def downgrade() -> None:
    """Drop pipeline tables."""
    op.drop_table('system_incidents')
    op.drop_table('brand_compliance_scores')
    op.drop_constraint('fk_brand_compliance_models_active_version', 'brand_compliance_models', type_='foreignkey')
    op.drop_table('brand_compliance_model_versions')
    op.drop_table('brand_compliance_models')
    op.drop_table('asset_versions')
    op.drop_table('assets')
