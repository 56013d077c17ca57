"""
SQLAlchemy tables and session factory.

Tables:
  - participants:        registrants (display_name is the canonical identity)
  - channels:            one platform account per row, owned by a participant
  - videos:              synced content, unique on (platform, external_video_id)
  - video_eligibility:   one verdict row per video; the admin override lives
                         alongside the computed fields so clearing it can fall
                         back to a fresh rule evaluation
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
    event,
)
from sqlalchemy.orm import declarative_base, relationship, sessionmaker

import config
from models.schemas import AdminOverridden, EligibilityResult, RuleComputed, Verdict

Base = declarative_base()


def _uuid() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Participant(Base):
    __tablename__ = "participants"
    id = Column(String, primary_key=True, default=_uuid)
    display_name = Column(String, nullable=False, index=True)
    discord_username = Column(String, nullable=True, index=True)
    email = Column(String, nullable=True)
    avatar_url = Column(String, nullable=True)
    dashboard_token = Column(String, unique=True, nullable=False, default=_uuid)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    channels = relationship(
        "Channel", back_populates="participant", cascade="all, delete-orphan",
        order_by="Channel.created_at",
    )


class Channel(Base):
    __tablename__ = "channels"
    id = Column(String, primary_key=True, default=_uuid)
    participant_id = Column(String, ForeignKey("participants.id"), nullable=False, index=True)
    platform = Column(String, nullable=False)  # 'tiktok' | 'youtube'
    handle = Column(String, nullable=True)  # tiktok
    platform_channel_id = Column(String, nullable=True)  # youtube
    url = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    participant = relationship("Participant", back_populates="channels")
    videos = relationship(
        "Video", back_populates="channel", cascade="all, delete-orphan",
        order_by="Video.published_at",
    )


class Video(Base):
    __tablename__ = "videos"
    __table_args__ = (
        UniqueConstraint("platform", "external_video_id", name="uq_platform_external_video"),
    )
    id = Column(String, primary_key=True, default=_uuid)
    channel_id = Column(String, ForeignKey("channels.id"), nullable=False, index=True)
    platform = Column(String, nullable=False)
    external_video_id = Column(String, nullable=False)
    title = Column(String, nullable=False, default="")
    description = Column(Text, nullable=True)
    published_at = Column(DateTime(timezone=True), nullable=False, index=True)
    duration_seconds = Column(Integer, nullable=True)
    views = Column(Integer, nullable=False, default=0)
    thumbnail_url = Column(String, nullable=True)
    url = Column(String, nullable=True)
    last_synced_at = Column(DateTime(timezone=True), default=_utcnow)
    channel = relationship("Channel", back_populates="videos")
    eligibility = relationship(
        "VideoEligibility", back_populates="video", uselist=False,
        cascade="all, delete-orphan",
    )


class VideoEligibility(Base):
    __tablename__ = "video_eligibility"
    id = Column(Integer, primary_key=True)
    video_id = Column(String, ForeignKey("videos.id"), unique=True, nullable=False)
    is_eligible = Column(Boolean, nullable=False, default=False)
    reasons = Column(JSON, nullable=False, default=list)
    eligible_robux = Column(Integer, nullable=False, default=0)
    overridden_by_admin = Column(Boolean, nullable=False, default=False)
    override_value = Column(Boolean, nullable=True)  # None unless overridden
    overridden_by = Column(String, nullable=True)
    overridden_at = Column(DateTime(timezone=True), nullable=True)
    computed_at = Column(DateTime(timezone=True), default=_utcnow)
    video = relationship("Video", back_populates="eligibility")

    @property
    def override(self):
        """Tri-state override: None, True or False."""
        if not self.overridden_by_admin:
            return None
        return self.override_value

    def verdict(self) -> Verdict:
        if self.override is not None:
            return AdminOverridden(
                is_eligible=self.override,
                overridden_by=self.overridden_by,
                overridden_at=self.overridden_at,
            )
        return RuleComputed(
            result=EligibilityResult(
                is_eligible=self.is_eligible,
                reasons=list(self.reasons or []),
                eligible_robux=self.eligible_robux,
            )
        )


# ---------------------------------------------------------------------------
# Engine / session
# ---------------------------------------------------------------------------
def make_engine(url: str = None, **kwargs):
    url = url or config.DATABASE_URL
    if not url.startswith("sqlite"):
        return create_engine(url, **kwargs)

    engine = create_engine(url, connect_args={"check_same_thread": False}, **kwargs)

    # pysqlite defers BEGIN on its own, which breaks SAVEPOINT; emit it ourselves
    @event.listens_for(engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return engine


engine = make_engine()
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def init_db(bind=None) -> None:
    Base.metadata.create_all(bind=bind or engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
