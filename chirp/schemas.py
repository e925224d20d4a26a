"""
Pydantic request / response schemas for the API layer.
Kept separate from ORM models to avoid coupling transport to storage.

Responses serialise with camelCase aliases (isLiked, createdAt, …), the wire
format existing clients expect. Cached payloads are stored in the same shape.
"""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel

from chirp.models import Comment, Message, Notification, NotificationType, User


class ApiModel(BaseModel):
    class Config:
        alias_generator = to_camel
        populate_by_name = True

    def to_json(self) -> dict:
        """Alias-keyed, JSON-safe dict for cache entries and pushes."""
        return self.model_dump(mode="json", by_alias=True)


class PageMeta(ApiModel):
    total: int
    page: int
    limit: int
    total_pages: int

    @classmethod
    def build(cls, total: int, page: int, limit: int) -> "PageMeta":
        return cls(
            total=total,
            page=page,
            limit=limit,
            total_pages=(total + limit - 1) // limit if limit else 0,
        )


# ──────────────────────────── Users ───────────────────────────────────────

class UserCreate(BaseModel):
    username: str = Field(..., min_length=3, max_length=100)
    email: Optional[str] = Field(None, max_length=255)
    display_name: Optional[str] = None


class UpdateProfileRequest(ApiModel):
    display_name: Optional[str] = Field(None, max_length=255)
    bio: Optional[str] = Field(None, max_length=500)
    profile_photo: Optional[str] = Field(None, max_length=500)


class UserSummary(ApiModel):
    id: str
    username: str
    display_name: Optional[str] = None
    profile_photo: Optional[str] = None

    @classmethod
    def from_model(cls, user: User) -> "UserSummary":
        return cls(
            id=user.user_id,
            username=user.username,
            display_name=user.display_name,
            profile_photo=user.profile_photo,
        )


class UserRecord(UserSummary):
    """Cacheable user row (no viewer-specific or count fields)."""
    email: Optional[str] = None
    bio: Optional[str] = None
    created_at: datetime

    @classmethod
    def from_model(cls, user: User) -> "UserRecord":
        return cls(
            id=user.user_id,
            username=user.username,
            display_name=user.display_name,
            profile_photo=user.profile_photo,
            email=user.email,
            bio=user.bio,
            created_at=user.created_at,
        )


class UserProfile(UserRecord):
    followers_count: int = 0
    following_count: int = 0
    tweets_count: int = 0
    is_followed_by_me: bool = False


class UserList(ApiModel):
    users: list[UserSummary]


# ──────────────────────────── Social graph ────────────────────────────────

class FollowRecord(ApiModel):
    follower_id: str
    following_id: str
    created_at: datetime


class FollowResponse(ApiModel):
    message: str
    created: bool
    follow: FollowRecord


class FollowListItem(ApiModel):
    user: UserSummary
    followed_at: datetime


class FollowPage(ApiModel):
    users: list[FollowListItem]
    meta: PageMeta


# ──────────────────────────── Polls ───────────────────────────────────────

class PollCreate(ApiModel):
    question: str = Field(..., min_length=1, max_length=500)
    options: list[str] = Field(..., min_length=2, max_length=10)
    expires_at: Optional[datetime] = None


class PollOptionResult(ApiModel):
    id: str
    text: str
    votes: int
    percentage: float


class PollResults(ApiModel):
    id: str
    question: str
    total_votes: int
    results: list[PollOptionResult]
    expires_at: Optional[datetime] = None
    is_expired: bool


class VoteRecord(ApiModel):
    poll_id: str
    option_id: str
    user_id: str
    created_at: datetime


class VoteByIndexRequest(ApiModel):
    option_index: int = Field(..., ge=0)


# ──────────────────────────── Tweets ──────────────────────────────────────

class TweetCreate(ApiModel):
    content: Optional[str] = Field(None, max_length=280)
    media_urls: list[str] = Field(default_factory=list)
    hashtags: list[str] = Field(default_factory=list)
    parent_id: Optional[str] = None


class TweetUpdate(ApiModel):
    content: Optional[str] = Field(None, max_length=280)
    hashtags: Optional[list[str]] = None


class TweetWithPollCreate(TweetCreate):
    poll: PollCreate


class TweetResponse(ApiModel):
    id: str
    content: Optional[str] = None
    media_urls: list[str] = Field(default_factory=list)
    has_media: bool = False
    parent_id: Optional[str] = None
    author: UserSummary
    hashtags: list[str] = Field(default_factory=list)
    like_count: int = 0
    retweet_count: int = 0
    comment_count: int = 0
    is_liked: bool = False
    is_retweeted: bool = False
    is_bookmarked: bool = False
    poll: Optional[PollResults] = None
    created_at: datetime
    updated_at: datetime


class CommentCreate(ApiModel):
    content: str = Field(..., min_length=1, max_length=280)


class CommentResponse(ApiModel):
    id: str
    tweet_id: str
    content: str
    author: UserSummary
    created_at: datetime

    @classmethod
    def from_model(cls, comment: Comment) -> "CommentResponse":
        return cls(
            id=comment.comment_id,
            tweet_id=comment.tweet_id,
            content=comment.content,
            author=UserSummary.from_model(comment.author),
            created_at=comment.created_at,
        )


class TweetDetail(TweetResponse):
    comments: list[CommentResponse] = Field(default_factory=list)


class TweetPage(ApiModel):
    tweets: list[TweetResponse]
    meta: PageMeta


class ToggleResponse(ApiModel):
    status: str
    message: str


class HashtagCount(ApiModel):
    id: str
    name: str
    count: int


class HashtagList(ApiModel):
    hashtags: list[HashtagCount]


class CacheStats(ApiModel):
    hit_rate: float
    hits: int
    misses: int
    total: int


class ActionResponse(ApiModel):
    success: bool = True
    message: str = ""


# ──────────────────────────── Notifications ───────────────────────────────

class ContentRef(ApiModel):
    id: str
    content: Optional[str] = None


class NotificationResponse(ApiModel):
    id: str
    type: NotificationType
    sender: UserSummary
    tweet: Optional[ContentRef] = None
    comment: Optional[ContentRef] = None
    read: bool
    created_at: datetime

    @classmethod
    def from_model(cls, notification: Notification) -> "NotificationResponse":
        tweet = notification.tweet
        comment = notification.comment
        return cls(
            id=notification.notification_id,
            type=notification.type,
            sender=UserSummary.from_model(notification.sender),
            tweet=ContentRef(id=tweet.tweet_id, content=tweet.content) if tweet else None,
            comment=ContentRef(id=comment.comment_id, content=comment.content) if comment else None,
            read=notification.read,
            created_at=notification.created_at,
        )


class NotificationPage(ApiModel):
    notifications: list[NotificationResponse]
    meta: PageMeta


class CountResponse(ApiModel):
    count: int


# ──────────────────────────── Messages ────────────────────────────────────

class MessageCreate(ApiModel):
    content: str = Field(..., min_length=1, max_length=2000)


class MessageResponse(ApiModel):
    id: str
    conversation_id: str
    sender_id: str
    receiver_id: str
    content: str
    read: bool
    created_at: datetime
    sender: UserSummary

    @classmethod
    def from_model(cls, message: Message) -> "MessageResponse":
        return cls(
            id=message.message_id,
            conversation_id=message.conversation_id,
            sender_id=message.sender_id,
            receiver_id=message.receiver_id,
            content=message.content,
            read=message.read,
            created_at=message.created_at,
            sender=UserSummary.from_model(message.sender),
        )


class ConversationSummary(ApiModel):
    id: str
    other_user: UserSummary
    last_message: Optional[MessageResponse] = None
    unread_count: int = 0
    is_online: bool = False


class ConversationUnread(ApiModel):
    conversation_id: str
    other_user_id: str
    count: int


class UnreadMessages(ApiModel):
    total: int
    conversations: list[ConversationUnread]


# ──────────────────────────── Search ──────────────────────────────────────

class SearchResponse(ApiModel):
    tweets: list[TweetResponse]
    users: list[UserSummary]
