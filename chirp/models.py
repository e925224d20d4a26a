"""
SQLAlchemy ORM models.

Tables:
  users          — profiles (credentials are managed by the auth service)
  follows        — social graph edges (follower → following)
  tweets         — tweet metadata, optional reply parent
  hashtags       — unique hashtag names
  tweet_hashtags — tweet × hashtag association
  likes, retweets, bookmarks — user × tweet toggle rows
  comments       — append-only replies attached to a tweet
  polls, poll_options, poll_votes — one poll per tweet, one vote per user
  notifications  — persisted fan-out records
  conversations, messages — direct messaging
"""
import enum
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from chirp.database import Base


def _uuid() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    # Naive UTC with microseconds so newest-first ordering is stable
    return datetime.now(timezone.utc).replace(tzinfo=None)


class NotificationType(str, enum.Enum):
    LIKE = "LIKE"
    COMMENT = "COMMENT"
    RETWEET = "RETWEET"
    FOLLOW = "FOLLOW"
    MENTION = "MENTION"
    POLL_ENDED = "POLL_ENDED"


class User(Base):
    __tablename__ = "users"

    user_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    username: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255), unique=True)
    display_name: Mapped[Optional[str]] = mapped_column(String(255))
    bio: Mapped[Optional[str]] = mapped_column(Text)
    profile_photo: Mapped[Optional[str]] = mapped_column(String(500))
    # bcrypt hash written by the auth service; never serialised
    password_hash: Mapped[Optional[str]] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)


class Follow(Base):
    __tablename__ = "follows"

    follower_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.user_id", ondelete="CASCADE"), primary_key=True
    )
    following_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.user_id", ondelete="CASCADE"), primary_key=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    follower = relationship("User", foreign_keys=[follower_id], lazy="joined")
    following = relationship("User", foreign_keys=[following_id], lazy="joined")

    __table_args__ = (
        # "who follows user X?", used by timeline fan-out invalidation
        Index("idx_follows_following", "following_id"),
    )


class Tweet(Base):
    __tablename__ = "tweets"

    tweet_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False
    )
    content: Mapped[Optional[str]] = mapped_column(Text)
    media_urls: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    has_media: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    parent_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("tweets.tweet_id", ondelete="CASCADE")
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow, nullable=False
    )

    author = relationship("User", lazy="joined")
    hashtags = relationship(
        "Hashtag", secondary="tweet_hashtags", lazy="selectin", order_by="Hashtag.name"
    )
    poll = relationship(
        "Poll",
        back_populates="tweet",
        uselist=False,
        lazy="selectin",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("idx_tweets_user_created", "user_id", "created_at"),
        Index("idx_tweets_created", "created_at"),
    )


class Hashtag(Base):
    __tablename__ = "hashtags"

    hashtag_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)


class TweetHashtag(Base):
    __tablename__ = "tweet_hashtags"

    tweet_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("tweets.tweet_id", ondelete="CASCADE"), primary_key=True
    )
    hashtag_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("hashtags.hashtag_id", ondelete="CASCADE"), primary_key=True
    )


class Like(Base):
    __tablename__ = "likes"

    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.user_id", ondelete="CASCADE"), primary_key=True
    )
    tweet_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("tweets.tweet_id", ondelete="CASCADE"), primary_key=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)


class Retweet(Base):
    __tablename__ = "retweets"

    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.user_id", ondelete="CASCADE"), primary_key=True
    )
    tweet_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("tweets.tweet_id", ondelete="CASCADE"), primary_key=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)


class Bookmark(Base):
    __tablename__ = "bookmarks"

    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.user_id", ondelete="CASCADE"), primary_key=True
    )
    tweet_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("tweets.tweet_id", ondelete="CASCADE"), primary_key=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    tweet = relationship("Tweet", lazy="joined")


class Comment(Base):
    __tablename__ = "comments"

    comment_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False
    )
    tweet_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("tweets.tweet_id", ondelete="CASCADE"), nullable=False
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    author = relationship("User", lazy="joined")

    __table_args__ = (Index("idx_comments_tweet", "tweet_id"),)


class Poll(Base):
    __tablename__ = "polls"

    poll_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    tweet_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("tweets.tweet_id", ondelete="CASCADE"), unique=True, nullable=False
    )
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False
    )
    question: Mapped[str] = mapped_column(String(500), nullable=False)
    # NULL means the poll never closes
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    ended_announced: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    tweet = relationship("Tweet", back_populates="poll")
    options = relationship(
        "PollOption", lazy="selectin", order_by="PollOption.position", cascade="all, delete-orphan"
    )

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return (now or utcnow()) > self.expires_at


class PollOption(Base):
    __tablename__ = "poll_options"

    option_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    poll_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("polls.poll_id", ondelete="CASCADE"), nullable=False
    )
    text: Mapped[str] = mapped_column(String(200), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)


class PollVote(Base):
    __tablename__ = "poll_votes"

    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.user_id", ondelete="CASCADE"), primary_key=True
    )
    poll_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("polls.poll_id", ondelete="CASCADE"), primary_key=True
    )
    option_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("poll_options.option_id", ondelete="CASCADE"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (Index("idx_poll_votes_option", "option_id"),)


class Notification(Base):
    __tablename__ = "notifications"

    notification_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    type: Mapped[NotificationType] = mapped_column(
        Enum(NotificationType, name="notification_type"), nullable=False
    )
    sender_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False
    )
    receiver_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False
    )
    tweet_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("tweets.tweet_id", ondelete="SET NULL")
    )
    comment_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("comments.comment_id", ondelete="SET NULL")
    )
    read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    sender = relationship("User", foreign_keys=[sender_id], lazy="joined")
    tweet = relationship("Tweet", lazy="joined")
    comment = relationship("Comment", lazy="joined")

    __table_args__ = (
        Index("idx_notifications_receiver", "receiver_id", "read", "created_at"),
    )


class Conversation(Base):
    __tablename__ = "conversations"

    conversation_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    # Stored sorted (user1_id < user2_id) so an unordered pair maps to one row
    user1_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False
    )
    user2_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    user1 = relationship("User", foreign_keys=[user1_id], lazy="joined")
    user2 = relationship("User", foreign_keys=[user2_id], lazy="joined")

    __table_args__ = (UniqueConstraint("user1_id", "user2_id", name="uq_conversation_pair"),)


class Message(Base):
    __tablename__ = "messages"

    message_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    conversation_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("conversations.conversation_id", ondelete="CASCADE"), nullable=False
    )
    sender_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False
    )
    receiver_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)
    read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    sender = relationship("User", foreign_keys=[sender_id], lazy="joined")

    __table_args__ = (
        Index("idx_messages_conversation", "conversation_id", "created_at"),
        Index("idx_messages_receiver_read", "receiver_id", "read"),
    )
