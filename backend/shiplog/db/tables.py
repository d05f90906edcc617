"""
ShipLog — SQLAlchemy tables.

Subscription tables (users, repos, repo_configs, channels,
email_recipients) are owned by the account surface; the pipeline only
reads them. Releases, generated notes and distributions are written by
the orchestrator.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def new_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class UserRecord(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    github_id: Mapped[int | None] = mapped_column(BigInteger, unique=True, nullable=True)
    login: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    access_token: Mapped[str] = mapped_column(Text, nullable=False)  # v1.<iv>.<ct>
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class RepoRecord(Base):
    __tablename__ = "repos"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False)
    owner: Mapped[str] = mapped_column(String(100), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    full_name: Mapped[str] = mapped_column(String(201), unique=True, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="ACTIVE")  # ACTIVE | PAUSED | DISCONNECTED
    webhook_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    webhook_secret: Mapped[str | None] = mapped_column(String(200), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    user: Mapped[UserRecord] = relationship()
    config: Mapped[RepoConfigRecord | None] = relationship(back_populates="repo")
    channels: Mapped[list[ChannelRecord]] = relationship(back_populates="repo")
    recipients: Mapped[list[EmailRecipientRecord]] = relationship(back_populates="repo")


class RepoConfigRecord(Base):
    __tablename__ = "repo_configs"

    repo_id: Mapped[str] = mapped_column(ForeignKey("repos.id"), primary_key=True)
    product_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    company_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    customer_tone: Mapped[str | None] = mapped_column(String(200), nullable=True)

    repo: Mapped[RepoRecord] = relationship(back_populates="config")


class ChannelRecord(Base):
    __tablename__ = "channels"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    repo_id: Mapped[str] = mapped_column(ForeignKey("repos.id"), nullable=False)
    provider: Mapped[str] = mapped_column(String(20), nullable=False)  # slack | discord | webhook
    webhook_url: Mapped[str] = mapped_column(Text, nullable=False)
    audience: Mapped[str] = mapped_column(String(20), nullable=False)
    name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True)

    repo: Mapped[RepoRecord] = relationship(back_populates="channels")


class EmailRecipientRecord(Base):
    __tablename__ = "email_recipients"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    repo_id: Mapped[str] = mapped_column(ForeignKey("repos.id"), nullable=False)
    address: Mapped[str] = mapped_column(String(320), nullable=False)
    audience: Mapped[str] = mapped_column(String(20), nullable=False)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True)

    repo: Mapped[RepoRecord] = relationship(back_populates="recipients")


class ReleaseRecord(Base):
    __tablename__ = "releases"
    __table_args__ = (UniqueConstraint("repo_id", "tag_name", name="uq_release_repo_tag"),)

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    repo_id: Mapped[str] = mapped_column(ForeignKey("repos.id"), nullable=False)
    github_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    tag_name: Mapped[str] = mapped_column(String(200), nullable=False)
    name: Mapped[str | None] = mapped_column(String(300), nullable=True)
    body: Mapped[str | None] = mapped_column(Text, nullable=True)
    html_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_draft: Mapped[bool] = mapped_column(Boolean, default=False)
    is_prerelease: Mapped[bool] = mapped_column(Boolean, default=False)
    status: Mapped[str] = mapped_column(String(20), default="RECEIVED")
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    published_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    repo: Mapped[RepoRecord] = relationship()
    notes: Mapped[NotesRecord | None] = relationship(back_populates="release")
    distributions: Mapped[list[DistributionRecord]] = relationship(
        back_populates="release", order_by="DistributionRecord.created_at"
    )


class NotesRecord(Base):
    __tablename__ = "generated_notes"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    release_id: Mapped[str] = mapped_column(ForeignKey("releases.id"), unique=True, nullable=False)
    customer: Mapped[str] = mapped_column(Text, nullable=False)
    developer: Mapped[str] = mapped_column(Text, nullable=False)
    stakeholder: Mapped[str] = mapped_column(Text, nullable=False)
    customer_edited: Mapped[bool] = mapped_column(Boolean, default=False)
    developer_edited: Mapped[bool] = mapped_column(Boolean, default=False)
    stakeholder_edited: Mapped[bool] = mapped_column(Boolean, default=False)
    tokens_used: Mapped[int] = mapped_column(Integer, default=0)
    model: Mapped[str] = mapped_column(String(100), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    release: Mapped[ReleaseRecord] = relationship(back_populates="notes")


class DistributionRecord(Base):
    __tablename__ = "distributions"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    release_id: Mapped[str] = mapped_column(ForeignKey("releases.id"), nullable=False)
    audience: Mapped[str] = mapped_column(String(20), nullable=False)
    channel_kind: Mapped[str] = mapped_column(String(30), nullable=False)
    destination: Mapped[str | None] = mapped_column(Text, nullable=True)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    error_detail: Mapped[str | None] = mapped_column(Text, nullable=True)
    response_code: Mapped[int | None] = mapped_column(Integer, nullable=True)
    responded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    release: Mapped[ReleaseRecord] = relationship(back_populates="distributions")
