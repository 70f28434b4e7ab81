"""create_core_tables

Revision ID: 4c1e8a2f9b7d
Revises:
Create Date: 2026-10-18 09:12:41.377204

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '4c1e8a2f9b7d'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
    ]


def _timestamp_indexes(table: str) -> None:
    op.create_index(op.f(f'ix_{table}_created_at'), table, ['created_at'], unique=False)
    op.create_index(op.f(f'ix_{table}_updated_at'), table, ['updated_at'], unique=False)


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table('users',
    sa.Column('id', sa.Uuid(), nullable=False),
    sa.Column('email', sa.String(length=255), nullable=False),
    sa.Column('name', sa.String(length=255), nullable=True),
    *_timestamps(),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_users_email'), 'users', ['email'], unique=True)
    _timestamp_indexes('users')

    op.create_table('collections',
    sa.Column('id', sa.Uuid(), nullable=False),
    sa.Column('owner_id', sa.Uuid(), nullable=False),
    sa.Column('title', sa.String(length=255), nullable=False),
    sa.Column('description', sa.Text(), nullable=True),
    sa.Column('parent_id', sa.Uuid(), nullable=True),
    sa.Column('is_default', sa.Boolean(), server_default=sa.false(), nullable=False),
    sa.Column('is_public', sa.Boolean(), server_default=sa.false(), nullable=False),
    sa.Column('share_slug', sa.String(length=32), nullable=True),
    sa.Column('sort_order', sa.Integer(), nullable=False),
    *_timestamps(),
    sa.CheckConstraint('is_public = (share_slug IS NOT NULL)', name='ck_collections_public_has_slug'),
    sa.ForeignKeyConstraint(['owner_id'], ['users.id'], ondelete='CASCADE'),
    sa.ForeignKeyConstraint(['parent_id'], ['collections.id'], ondelete='SET NULL'),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('share_slug')
    )
    op.create_index(op.f('ix_collections_owner_id'), 'collections', ['owner_id'], unique=False)
    op.create_index(op.f('ix_collections_parent_id'), 'collections', ['parent_id'], unique=False)
    op.create_index(
        'uq_collections_owner_default', 'collections', ['owner_id'], unique=True,
        postgresql_where=sa.text('is_default'), sqlite_where=sa.text('is_default'),
    )
    _timestamp_indexes('collections')

    op.create_table('tags',
    sa.Column('id', sa.Uuid(), nullable=False),
    sa.Column('user_id', sa.Uuid(), nullable=False),
    sa.Column('name', sa.String(length=100), nullable=False),
    sa.Column('normalized_name', sa.String(length=100), nullable=False),
    sa.Column('color', sa.String(length=32), nullable=True),
    *_timestamps(),
    sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('user_id', 'normalized_name', name='uq_tags_user_id_normalized_name')
    )
    op.create_index(op.f('ix_tags_user_id'), 'tags', ['user_id'], unique=False)
    _timestamp_indexes('tags')

    op.create_table('bookmarks',
    sa.Column('id', sa.Uuid(), nullable=False),
    sa.Column('user_id', sa.Uuid(), nullable=False),
    sa.Column('collection_id', sa.Uuid(), nullable=False),
    sa.Column('url', sa.Text(), nullable=False),
    sa.Column('normalized_url', sa.Text(), nullable=False),
    sa.Column('title', sa.String(length=500), nullable=False),
    sa.Column('excerpt', sa.Text(), nullable=True),
    sa.Column('cover_url', sa.Text(), nullable=True),
    sa.Column('note', sa.Text(), nullable=True),
    sa.Column('domain', sa.String(length=255), nullable=False),
    sa.Column('type', sa.Enum('link', 'article', 'video', 'image', 'document', 'audio', name='bookmarktype', native_enum=False, length=16), nullable=False),
    sa.Column('is_duplicate', sa.Boolean(), server_default=sa.false(), nullable=False),
    sa.Column('is_broken', sa.Boolean(), server_default=sa.false(), nullable=False),
    sa.Column('is_favorite', sa.Boolean(), server_default=sa.false(), nullable=False),
    sa.Column('sort_order', sa.Integer(), nullable=False),
    sa.Column('snapshot_path', sa.Text(), nullable=True),
    *_timestamps(),
    sa.ForeignKeyConstraint(['collection_id'], ['collections.id'], ondelete='RESTRICT'),
    sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_bookmarks_user_id'), 'bookmarks', ['user_id'], unique=False)
    op.create_index(op.f('ix_bookmarks_collection_id'), 'bookmarks', ['collection_id'], unique=False)
    op.create_index(op.f('ix_bookmarks_domain'), 'bookmarks', ['domain'], unique=False)
    op.create_index('ix_bookmarks_user_id_normalized_url', 'bookmarks', ['user_id', 'normalized_url'], unique=False)
    op.create_index('ix_bookmarks_collection_id_sort_order', 'bookmarks', ['collection_id', 'sort_order'], unique=False)
    _timestamp_indexes('bookmarks')

    op.create_table('bookmark_tags',
    sa.Column('bookmark_id', sa.Uuid(), nullable=False),
    sa.Column('tag_id', sa.Uuid(), nullable=False),
    sa.ForeignKeyConstraint(['bookmark_id'], ['bookmarks.id'], ondelete='CASCADE'),
    sa.ForeignKeyConstraint(['tag_id'], ['tags.id'], ondelete='CASCADE'),
    sa.PrimaryKeyConstraint('bookmark_id', 'tag_id')
    )
    op.create_index('ix_bookmark_tags_tag_id', 'bookmark_tags', ['tag_id'], unique=False)

    op.create_table('collection_permissions',
    sa.Column('id', sa.Uuid(), nullable=False),
    sa.Column('collection_id', sa.Uuid(), nullable=False),
    sa.Column('user_id', sa.Uuid(), nullable=False),
    sa.Column('role', sa.Enum('viewer', 'editor', name='permissionrole', native_enum=False, length=16), nullable=False),
    *_timestamps(),
    sa.ForeignKeyConstraint(['collection_id'], ['collections.id'], ondelete='CASCADE'),
    sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('collection_id', 'user_id', name='uq_collection_permissions_collection_user')
    )
    op.create_index(op.f('ix_collection_permissions_collection_id'), 'collection_permissions', ['collection_id'], unique=False)
    op.create_index(op.f('ix_collection_permissions_user_id'), 'collection_permissions', ['user_id'], unique=False)
    _timestamp_indexes('collection_permissions')

    op.create_table('highlights',
    sa.Column('id', sa.Uuid(), nullable=False),
    sa.Column('bookmark_id', sa.Uuid(), nullable=False),
    sa.Column('user_id', sa.Uuid(), nullable=False),
    sa.Column('text', sa.Text(), nullable=False),
    sa.Column('note', sa.Text(), nullable=True),
    sa.Column('color', sa.String(length=16), nullable=False),
    *_timestamps(),
    sa.ForeignKeyConstraint(['bookmark_id'], ['bookmarks.id'], ondelete='CASCADE'),
    sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_highlights_bookmark_id'), 'highlights', ['bookmark_id'], unique=False)
    op.create_index(op.f('ix_highlights_user_id'), 'highlights', ['user_id'], unique=False)
    _timestamp_indexes('highlights')


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table('highlights')
    op.drop_table('collection_permissions')
    op.drop_table('bookmark_tags')
    op.drop_table('bookmarks')
    op.drop_table('tags')
    op.drop_table('collections')
    op.drop_table('users')
