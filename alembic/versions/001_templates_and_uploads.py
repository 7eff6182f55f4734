"""Create templates and uploads tables

Revision ID: 001_templates_and_uploads
Revises: 
Create Date: 2026-10-18

- templates: named transformation parameter bundles
- uploads: upload lifecycle records with per-stage metadata
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision = '001_templates_and_uploads'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'templates',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('description', sa.String(500), nullable=True),
        # Geometry
        sa.Column('width', sa.Integer(), nullable=False),
        sa.Column('height', sa.Integer(), nullable=False),
        sa.Column('fit', sa.String(), nullable=False, server_default='cover'),
        sa.Column('crop_position', sa.String(), nullable=False, server_default='center'),
        sa.Column('crop_x', sa.Integer(), nullable=True),
        sa.Column('crop_y', sa.Integer(), nullable=True),
        sa.Column('crop_width', sa.Integer(), nullable=True),
        sa.Column('crop_height', sa.Integer(), nullable=True),
        sa.Column('background_color', sa.String(), nullable=True),
        # Tone
        sa.Column('brightness', sa.Float(), nullable=True),
        sa.Column('contrast', sa.Float(), nullable=True),
        sa.Column('saturation', sa.Float(), nullable=True),
        sa.Column('hue', sa.Float(), nullable=True),
        sa.Column('blur', sa.Float(), nullable=True),
        sa.Column('sharpen', sa.Float(), nullable=True),
        # Frame
        sa.Column('box_enabled', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('box_color', sa.String(), nullable=False, server_default='#ffffff'),
        sa.Column('box_padding', sa.Integer(), nullable=False, server_default='20'),
        sa.Column('box_border_width', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('box_border_color', sa.String(), nullable=False, server_default='#000000'),
        sa.Column('box_border_radius', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('box_shadow_enabled', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('box_shadow_blur', sa.Integer(), nullable=False, server_default='10'),
        sa.Column('box_shadow_offset_x', sa.Integer(), nullable=False, server_default='5'),
        sa.Column('box_shadow_offset_y', sa.Integer(), nullable=False, server_default='5'),
        sa.Column('box_shadow_opacity', sa.Float(), nullable=False, server_default='0.3'),
        sa.Column('box_shadow_color', sa.String(), nullable=False, server_default='#000000'),
        # Watermark
        sa.Column('watermark_enabled', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('watermark_text', sa.String(100), nullable=True),
        sa.Column('watermark_position', sa.String(), nullable=False, server_default='bottom-right'),
        sa.Column('watermark_opacity', sa.Float(), nullable=False, server_default='0.5'),
        sa.Column('watermark_size', sa.Integer(), nullable=True),
        # Output
        sa.Column('format', sa.String(), nullable=False, server_default='jpeg'),
        sa.Column('quality', sa.Integer(), nullable=False, server_default='80'),
        sa.Column('progressive', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('optimize_scans', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('strip_metadata', sa.Boolean(), nullable=False, server_default=sa.true()),
        # Flags
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('is_default', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
    )
    op.create_index('ix_templates_name', 'templates', ['name'], unique=True)
    op.create_index('ix_templates_is_active', 'templates', ['is_active'])
    op.create_index('ix_templates_is_default', 'templates', ['is_default'])

    op.create_table(
        'uploads',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('original_filename', sa.String(), nullable=False),
        sa.Column('mime_type', sa.String(), nullable=False),
        sa.Column('file_size', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('staging_path', sa.String(), nullable=True),
        sa.Column('resource_type', sa.String(), nullable=False, server_default='image'),
        sa.Column('template_id', sa.String(), sa.ForeignKey('templates.id'), nullable=True),
        sa.Column('template_snapshot', sa.JSON(), nullable=True),
        sa.Column('status', sa.String(), nullable=False, server_default='pending'),
        sa.Column('current_stage', sa.String(), nullable=True),
        sa.Column('original_width', sa.Integer(), nullable=True),
        sa.Column('original_height', sa.Integer(), nullable=True),
        sa.Column('processed_width', sa.Integer(), nullable=True),
        sa.Column('processed_height', sa.Integer(), nullable=True),
        sa.Column('processed_format', sa.String(), nullable=True),
        sa.Column('processed_size', sa.Integer(), nullable=True),
        sa.Column('storage_identifier', sa.String(), nullable=True),
        sa.Column('storage_url', sa.String(), nullable=True),
        sa.Column('error_message', sa.String(), nullable=True),
        sa.Column('error_stage', sa.String(), nullable=True),
        sa.Column('stages_metadata', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_uploads_template_id', 'uploads', ['template_id'])
    op.create_index('ix_uploads_status', 'uploads', ['status'])
    op.create_index('ix_uploads_created_at', 'uploads', ['created_at'])


def downgrade() -> None:
    op.drop_index('ix_uploads_created_at', table_name='uploads')
    op.drop_index('ix_uploads_status', table_name='uploads')
    op.drop_index('ix_uploads_template_id', table_name='uploads')
    op.drop_table('uploads')

    op.drop_index('ix_templates_is_default', table_name='templates')
    op.drop_index('ix_templates_is_active', table_name='templates')
    op.drop_index('ix_templates_name', table_name='templates')
    op.drop_table('templates')
