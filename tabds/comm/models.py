"""ORM models of the prepared-dataset index.

The index is derived data: every row can be rebuilt from the YAML
registry. Tables use a ``ds_`` prefix.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import BigInteger, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""


class PreparedDatasetRow(Base):
    """A dataset prepared in the cache (mirrors :class:`PreparedDataset`)."""

    __tablename__ = "ds_datasets"

    dataset_id: Mapped[str] = mapped_column(String(512), primary_key=True)
    builder_name: Mapped[str] = mapped_column(String(256), default="")
    config_name: Mapped[str] = mapped_column(String(256), default="")
    version: Mapped[str] = mapped_column(String(32), default="0.0.0")
    cache_dir: Mapped[str] = mapped_column(Text, default="")
    description: Mapped[str] = mapped_column(Text, default="")
    num_examples: Mapped[int] = mapped_column(BigInteger, default=0)
    dataset_size: Mapped[int] = mapped_column(BigInteger, default=0)
    download_size: Mapped[int] = mapped_column(BigInteger, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    splits: Mapped[list[SplitRow]] = relationship(
        "SplitRow", back_populates="dataset", cascade="all, delete-orphan"
    )
    files: Mapped[list[ShardFileRow]] = relationship(
        "ShardFileRow", back_populates="dataset", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("ix_ds_datasets_builder", "builder_name"),
        Index("ix_ds_datasets_config", "config_name"),
    )


class SplitRow(Base):
    """Example count of one split."""

    __tablename__ = "ds_splits"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    dataset_id: Mapped[str] = mapped_column(
        String(512), ForeignKey("ds_datasets.dataset_id", ondelete="CASCADE")
    )
    name: Mapped[str] = mapped_column(String(128))
    num_examples: Mapped[int] = mapped_column(BigInteger, default=0)

    dataset: Mapped[PreparedDatasetRow] = relationship("PreparedDatasetRow", back_populates="splits")


class ShardFileRow(Base):
    """One shard file of a split."""

    __tablename__ = "ds_files"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    dataset_id: Mapped[str] = mapped_column(
        String(512), ForeignKey("ds_datasets.dataset_id", ondelete="CASCADE")
    )
    split: Mapped[str] = mapped_column(String(128))
    path: Mapped[str] = mapped_column(Text)
    size: Mapped[int] = mapped_column(BigInteger, default=0)
    checksum: Mapped[str] = mapped_column(String(80), default="")

    dataset: Mapped[PreparedDatasetRow] = relationship("PreparedDatasetRow", back_populates="files")
