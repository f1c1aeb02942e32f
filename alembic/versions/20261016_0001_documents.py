"""document store table

Revision ID: 20261016_0001
Revises:
Create Date: 2026-10-16 00:01:00
"""

from alembic import op
import sqlalchemy as sa


revision = '20261016_0001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)
    if 'documents' in inspector.get_table_names():
        idx_names = {idx['name'] for idx in inspector.get_indexes('documents')}
    else:
        op.create_table(
            'documents',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('collection', sa.String(length=80), nullable=False),
            sa.Column('doc_key', sa.String(length=255), nullable=False),
            sa.Column('data_json', sa.Text(), nullable=False, server_default='{}'),
            sa.Column('version', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('created_at', sa.DateTime(), nullable=False),
            sa.Column('updated_at', sa.DateTime(), nullable=False),
            sa.UniqueConstraint('collection', 'doc_key', name='uq_documents_collection_key'),
        )
        idx_names = set()

    if 'ix_documents_collection' not in idx_names:
        op.create_index('ix_documents_collection', 'documents', ['collection'])
    if 'ix_documents_updated_at' not in idx_names:
        op.create_index('ix_documents_updated_at', 'documents', ['updated_at'])
    if 'ix_documents_id' not in idx_names:
        op.create_index('ix_documents_id', 'documents', ['id'])


def downgrade() -> None:
    op.drop_index('ix_documents_id', table_name='documents')
    op.drop_index('ix_documents_updated_at', table_name='documents')
    op.drop_index('ix_documents_collection', table_name='documents')
    op.drop_table('documents')
