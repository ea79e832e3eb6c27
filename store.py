"""
Forum store: entity CRUD, role-gated moderation and search over a key-value substrate.

Every public call reads the collections it needs from the substrate, applies
authorization and validity checks, mutates in memory and writes the whole
collections back before returning. Calls are serialized by one re-entrant lock.

Gated operations never raise for a refused action. They return a Failure,
which is falsy and tells why: UNAUTHORIZED (actor lacks the role),
NOT_FOUND (actor or target missing) or INVALID_STATE (target in the wrong
state, actor is the target, invalid input).
"""

import functools
import logging
import threading
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Dict, List, Optional, Union

from bson import ObjectId
from pydantic import TypeAdapter, ValidationError

from database import KeyValueStore
from schemas import (
    MODERATOR_ROLES,
    VISIBILITIES,
    Announcement,
    BanInfo,
    Comment,
    Post,
    SystemSettings,
    User,
    UserProfile,
)

logger = logging.getLogger(__name__)

# Substrate keys, one serialized collection or record each
USERS_KEY = "bhxw_users"
POSTS_KEY = "bhxw_posts"
COMMENTS_KEY = "bhxw_comments"
CURRENT_USER_KEY = "bhxw_current_user"
SETTINGS_KEY = "bhxw_settings"
TAGS_KEY = "bhxw_tags"
ANNOUNCEMENTS_KEY = "bhxw_announcements"

DEFAULT_TAGS = ["伙食", "八卦", "老师", "笔记", "小道消息", "活动", "失物招领", "二手交易", "成绩", "其他"]
MIN_PASSWORD_LENGTH = 6
SELF_DELETE_REASON = "deleted by author"
AVATAR_URL_TEMPLATE = "https://api.dicebear.com/7.x/avataaars/svg?seed={seed}"

_users = TypeAdapter(List[User])
_posts = TypeAdapter(List[Post])
_comments = TypeAdapter(List[Comment])
_announcements = TypeAdapter(List[Announcement])
_tags = TypeAdapter(List[str])
_settings = TypeAdapter(SystemSettings)
_user = TypeAdapter(User)


class FailureKind(str, Enum):
    UNAUTHORIZED = "unauthorized"
    NOT_FOUND = "not_found"
    INVALID_STATE = "invalid_state"


class Failure:
    """Falsy result of a refused operation."""

    __slots__ = ("kind", "reason")

    def __init__(self, kind: FailureKind, reason: str = ""):
        self.kind = kind
        self.reason = reason

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return f"Failure({self.kind.value!r}, {self.reason!r})"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id(prefix: str) -> str:
    return f"{prefix}_{ObjectId()}"


def synchronized(method):
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        with self._lock:
            return method(self, *args, **kwargs)
    return wrapper


def _fail(kind: FailureKind, reason: str) -> Failure:
    logger.debug("Refused: %s (%s)", reason, kind.value)
    return Failure(kind, reason)


def _find(items, item_id: str):
    return next((item for item in items if item.id == item_id), None)


def _merge(model, current, updates):
    try:
        return model.model_validate({**current.model_dump(), **updates})
    except ValidationError as exc:
        return _fail(FailureKind.INVALID_STATE, f"invalid {model.__name__} update: {exc.error_count()} error(s)")


def _bump(user: Optional[User], field: str, delta: int) -> None:
    if user is not None:
        setattr(user, field, max(0, getattr(user, field) + delta))


def _can_see(post: Post, viewer: Optional[User]) -> bool:
    if post.visibility == "school":
        return True
    if viewer is None:
        return False
    if post.visibility == "grade":
        return post.author_year == viewer.enrollment_year
    return post.author_year == viewer.enrollment_year and post.author_class == viewer.class_number


def demo_users() -> List[User]:
    return [
        User(
            id="user_owner",
            username="ZJCjonathan25",
            nickname="站主",
            enrollment_year=2024,
            class_number=15,
            avatar=AVATAR_URL_TEMPLATE.format(seed="ZJCjonathan25"),
            password="ZJCjonathan0721",
            role="owner",
            created_at=datetime(2026, 2, 27, tzinfo=timezone.utc),
            profile=UserProfile(
                bio="滨海小外初中论坛站主，欢迎大家！",
                hobbies=["编程", "篮球", "音乐"],
                phone="138****8888",
                wechat="ZJCjonathan25",
                email="owner@bhxw.edu",
                gender="male",
                location="天津",
            ),
        ),
        User(
            id="user_admin1",
            username="admin01",
            nickname="管理员",
            enrollment_year=2024,
            class_number=5,
            avatar=AVATAR_URL_TEMPLATE.format(seed="admin01"),
            password="123456",
            role="admin",
            created_at=datetime(2024, 1, 15, 8, 30, tzinfo=timezone.utc),
            profile=UserProfile(bio="热爱学习，乐于助人", hobbies=["阅读", "跑步"], gender="male"),
        ),
    ]


class Store:
    def __init__(self, backend: KeyValueStore, clock: Optional[Callable[[], datetime]] = None, seed: bool = True):
        self.backend = backend
        self.clock = clock or utcnow
        self._lock = threading.RLock()
        if seed and self.backend.get(USERS_KEY) is None:
            self.seed()

    @synchronized
    def seed(self) -> None:
        """Write the first-run data set: two demo accounts, default tags and settings."""
        self._save(USERS_KEY, _users, demo_users())
        self._save(POSTS_KEY, _posts, [])
        self._save(COMMENTS_KEY, _comments, [])
        self._save(SETTINGS_KEY, _settings, SystemSettings())
        self._save(TAGS_KEY, _tags, list(DEFAULT_TAGS))
        self._save(ANNOUNCEMENTS_KEY, _announcements, [])
        logger.info("Seeded forum store with demo accounts and %d tags", len(DEFAULT_TAGS))

    # ----------------- Substrate -----------------

    def _load(self, key: str, adapter: TypeAdapter, default):
        raw = self.backend.get(key)
        if raw is None:
            return default
        return adapter.validate_json(raw)

    def _save(self, key: str, adapter: TypeAdapter, value) -> None:
        self.backend.set(key, adapter.dump_json(value).decode("utf-8"))

    def _actor_with_role(self, users: List[User], actor_id: str, roles) -> Union[User, Failure]:
        actor = _find(users, actor_id)
        if actor is None:
            return _fail(FailureKind.NOT_FOUND, f"actor {actor_id} does not exist")
        if actor.role not in roles:
            return _fail(FailureKind.UNAUTHORIZED, f"{actor.role} {actor_id} may not do this")
        return actor

    # ----------------- Settings -----------------

    def get_settings(self) -> SystemSettings:
        return self._load(SETTINGS_KEY, _settings, SystemSettings())

    @synchronized
    def update_settings(self, actor_id: str, **changes) -> Union[SystemSettings, Failure]:
        actor = self._actor_with_role(self.get_users(), actor_id, ("owner",))
        if not actor:
            return actor
        updated = _merge(SystemSettings, self.get_settings(), changes)
        if not updated:
            return updated
        self._save(SETTINGS_KEY, _settings, updated)
        logger.info("Settings updated by %s: %s", actor_id, sorted(changes))
        return updated

    # ----------------- Tags -----------------

    def get_tags(self) -> List[str]:
        return self._load(TAGS_KEY, _tags, list(DEFAULT_TAGS))

    @synchronized
    def add_tag(self, actor_id: str, tag: str) -> Union[bool, Failure]:
        actor = self._actor_with_role(self.get_users(), actor_id, ("owner",))
        if not actor:
            return actor
        tag = tag.strip()
        tags = self.get_tags()
        if not tag or tag in tags:
            return _fail(FailureKind.INVALID_STATE, f"tag {tag!r} is blank or already exists")
        tags.append(tag)
        self._save(TAGS_KEY, _tags, tags)
        logger.info("Tag %r added by %s", tag, actor_id)
        return True

    @synchronized
    def remove_tag(self, actor_id: str, tag: str) -> Union[bool, Failure]:
        actor = self._actor_with_role(self.get_users(), actor_id, ("owner",))
        if not actor:
            return actor
        tags = self.get_tags()
        if tag not in tags:
            return _fail(FailureKind.NOT_FOUND, f"tag {tag!r} does not exist")
        tags.remove(tag)
        self._save(TAGS_KEY, _tags, tags)
        logger.info("Tag %r removed by %s", tag, actor_id)
        return True

    # ----------------- Announcements -----------------

    def get_announcements(self) -> List[Announcement]:
        return self._load(ANNOUNCEMENTS_KEY, _announcements, [])

    def get_active_announcements(self) -> List[Announcement]:
        return [a for a in self.get_announcements() if a.is_active]

    @synchronized
    def create_announcement(
        self, actor_id: str, title: str, content: str, is_active: bool = True
    ) -> Union[Announcement, Failure]:
        actor = self.get_user_by_id(actor_id)
        if actor is None:
            return _fail(FailureKind.NOT_FOUND, f"actor {actor_id} does not exist")
        announcement = Announcement(
            id=new_id("announcement"),
            title=title,
            content=content,
            created_at=self.clock(),
            created_by=actor.id,
            created_by_name=actor.nickname,
            is_active=is_active,
        )
        announcements = self.get_announcements()
        announcements.insert(0, announcement)
        self._save(ANNOUNCEMENTS_KEY, _announcements, announcements)
        return announcement

    @synchronized
    def update_announcement(self, announcement_id: str, **updates) -> Union[Announcement, Failure]:
        announcements = self.get_announcements()
        for index, current in enumerate(announcements):
            if current.id == announcement_id:
                updated = _merge(Announcement, current, updates)
                if not updated:
                    return updated
                announcements[index] = updated
                self._save(ANNOUNCEMENTS_KEY, _announcements, announcements)
                return announcements[index]
        return _fail(FailureKind.NOT_FOUND, f"announcement {announcement_id} does not exist")

    @synchronized
    def delete_announcement(self, announcement_id: str) -> Union[bool, Failure]:
        announcements = self.get_announcements()
        remaining = [a for a in announcements if a.id != announcement_id]
        if len(remaining) == len(announcements):
            return _fail(FailureKind.NOT_FOUND, f"announcement {announcement_id} does not exist")
        self._save(ANNOUNCEMENTS_KEY, _announcements, remaining)
        return True

    # ----------------- Users -----------------

    def get_users(self) -> List[User]:
        return self._load(USERS_KEY, _users, [])

    def get_user_by_id(self, user_id: str) -> Optional[User]:
        return _find(self.get_users(), user_id)

    def get_user_by_username(self, username: str) -> Optional[User]:
        return next((u for u in self.get_users() if u.username == username), None)

    def get_admins(self) -> List[User]:
        return [u for u in self.get_users() if u.role == "admin"]

    @synchronized
    def create_user(
        self,
        username: str,
        nickname: str,
        enrollment_year: int,
        class_number: int,
        password: str,
        avatar: Optional[str] = None,
        profile: Optional[UserProfile] = None,
    ) -> Union[User, Failure]:
        """Add a user. The owner role goes to whoever registers as settings.owner_username."""
        users = self.get_users()
        if any(u.username == username for u in users):
            return _fail(FailureKind.INVALID_STATE, f"username {username!r} is taken")
        is_owner = username == self.get_settings().owner_username
        user = User(
            id=new_id("user"),
            username=username,
            nickname=nickname,
            enrollment_year=enrollment_year,
            class_number=class_number,
            avatar=avatar,
            password=password,
            role="owner" if is_owner else "user",
            created_at=self.clock(),
            profile=profile,
        )
        users.append(user)
        self._save(USERS_KEY, _users, users)
        logger.info("Created user %s (%s) as %s", user.id, username, user.role)
        return user

    @synchronized
    def register(
        self,
        username: str,
        nickname: str,
        enrollment_year: int,
        class_number: int,
        password: str,
        confirm_password: Optional[str] = None,
        avatar: Optional[str] = None,
    ) -> Union[User, Failure]:
        username = username.strip()
        if not username:
            return _fail(FailureKind.INVALID_STATE, "username is required")
        if not nickname.strip():
            return _fail(FailureKind.INVALID_STATE, "nickname is required")
        settings = self.get_settings()
        if enrollment_year not in settings.enrollment_years:
            return _fail(FailureKind.INVALID_STATE, f"enrollment year {enrollment_year} is not offered")
        if class_number not in settings.class_numbers:
            return _fail(FailureKind.INVALID_STATE, f"class {class_number} is not offered")
        if len(password) < MIN_PASSWORD_LENGTH:
            return _fail(FailureKind.INVALID_STATE, f"password must be at least {MIN_PASSWORD_LENGTH} characters")
        if confirm_password is not None and confirm_password != password:
            return _fail(FailureKind.INVALID_STATE, "passwords do not match")
        return self.create_user(
            username=username,
            nickname=nickname.strip(),
            enrollment_year=enrollment_year,
            class_number=class_number,
            password=password,
            avatar=avatar or AVATAR_URL_TEMPLATE.format(seed=username),
        )

    @synchronized
    def login(self, username: str, password: str) -> Union[User, Failure]:
        user = self.get_user_by_username(username)
        if user is None or user.password != password:
            return _fail(FailureKind.UNAUTHORIZED, "invalid credentials")
        if self.is_user_banned(user.id):
            return _fail(FailureKind.INVALID_STATE, f"user {user.id} is banned")
        # is_user_banned may have lifted an expired ban
        return self.get_user_by_id(user.id)

    @synchronized
    def update_user(self, user_id: str, **updates) -> Union[User, Failure]:
        users = self.get_users()
        for index, current in enumerate(users):
            if current.id == user_id:
                updated = _merge(User, current, updates)
                if not updated:
                    return updated
                users[index] = updated
                self._save(USERS_KEY, _users, users)
                return users[index]
        return _fail(FailureKind.NOT_FOUND, f"user {user_id} does not exist")

    def update_user_profile(self, user_id: str, profile: Union[UserProfile, Dict]) -> Union[User, Failure]:
        if isinstance(profile, UserProfile):
            profile = profile.model_dump()
        return self.update_user(user_id, profile=profile)

    @synchronized
    def update_user_avatar(self, user_id: str, avatar: str) -> Union[User, Failure]:
        """Change the avatar and rewrite the author_avatar snapshot on the user's posts and comments."""
        users = self.get_users()
        user = _find(users, user_id)
        if user is None:
            return _fail(FailureKind.NOT_FOUND, f"user {user_id} does not exist")
        user.avatar = avatar
        posts = self.get_posts()
        for post in posts:
            if post.author_id == user_id:
                post.author_avatar = avatar
        comments = self.get_comments()
        for comment in comments:
            if comment.author_id == user_id:
                comment.author_avatar = avatar
        self._save(USERS_KEY, _users, users)
        self._save(POSTS_KEY, _posts, posts)
        self._save(COMMENTS_KEY, _comments, comments)
        return user

    @synchronized
    def delete_user(self, user_id: str, owner_id: str) -> Union[bool, Failure]:
        """Remove a user with all their posts and comments. Owner only, never self."""
        users = self.get_users()
        owner = self._actor_with_role(users, owner_id, ("owner",))
        if not owner:
            return owner
        if _find(users, user_id) is None:
            return _fail(FailureKind.NOT_FOUND, f"user {user_id} does not exist")
        if user_id == owner_id:
            return _fail(FailureKind.INVALID_STATE, "the owner cannot delete themselves")

        posts = self.get_posts()
        removed_posts = {p.id for p in posts if p.author_id == user_id}
        posts = [p for p in posts if p.id not in removed_posts]
        comments = []
        for comment in self.get_comments():
            if comment.post_id in removed_posts:
                continue
            if comment.author_id == user_id:
                if not comment.is_deleted:
                    post = _find(posts, comment.post_id)
                    if post is not None:
                        post.comments = max(0, post.comments - 1)
                continue
            comments.append(comment)

        self._save(POSTS_KEY, _posts, posts)
        self._save(COMMENTS_KEY, _comments, comments)
        self._save(USERS_KEY, _users, [u for u in users if u.id != user_id])
        logger.info("User %s deleted by %s with %d posts", user_id, owner_id, len(removed_posts))
        return True

    # ----------------- Moderation -----------------

    @synchronized
    def appoint_admin(self, user_id: str, appointed_by: str) -> Union[User, Failure]:
        users = self.get_users()
        actor = self._actor_with_role(users, appointed_by, ("owner",))
        if not actor:
            return actor
        user = _find(users, user_id)
        if user is None:
            return _fail(FailureKind.NOT_FOUND, f"user {user_id} does not exist")
        if user.role != "user":
            return _fail(FailureKind.INVALID_STATE, f"cannot appoint a {user.role}")
        user.role = "admin"
        self._save(USERS_KEY, _users, users)
        logger.info("User %s appointed admin by %s", user_id, appointed_by)
        return user

    @synchronized
    def remove_admin(self, user_id: str, removed_by: str) -> Union[User, Failure]:
        users = self.get_users()
        actor = self._actor_with_role(users, removed_by, ("owner",))
        if not actor:
            return actor
        user = _find(users, user_id)
        if user is None:
            return _fail(FailureKind.NOT_FOUND, f"user {user_id} does not exist")
        if user.role != "admin":
            return _fail(FailureKind.INVALID_STATE, f"{user_id} is not an admin")
        user.role = "user"
        self._save(USERS_KEY, _users, users)
        logger.info("Admin %s removed by %s", user_id, removed_by)
        return user

    @synchronized
    def ban_user(
        self,
        user_id: str,
        banned_by: str,
        reason: Optional[str] = None,
        duration_days: Optional[float] = None,
    ) -> Union[User, Failure]:
        """Ban a user. Without duration_days the ban lasts until unban_user."""
        users = self.get_users()
        actor = self._actor_with_role(users, banned_by, MODERATOR_ROLES)
        if not actor:
            return actor
        user = _find(users, user_id)
        if user is None:
            return _fail(FailureKind.NOT_FOUND, f"user {user_id} does not exist")
        if user.role == "owner":
            return _fail(FailureKind.INVALID_STATE, "the owner cannot be banned")
        now = self.clock()
        user.role = "banned"
        user.ban_info = BanInfo(
            is_banned=True,
            banned_at=now,
            banned_until=now + timedelta(days=duration_days) if duration_days else None,
            ban_reason=reason,
            banned_by=banned_by,
        )
        self._save(USERS_KEY, _users, users)
        logger.info("User %s banned by %s until %s: %s", user_id, banned_by, user.ban_info.banned_until, reason)
        return user

    @synchronized
    def unban_user(self, user_id: str, unbanned_by: str) -> Union[User, Failure]:
        users = self.get_users()
        actor = self._actor_with_role(users, unbanned_by, MODERATOR_ROLES)
        if not actor:
            return actor
        user = _find(users, user_id)
        if user is None:
            return _fail(FailureKind.NOT_FOUND, f"user {user_id} does not exist")
        if user.role != "banned":
            return _fail(FailureKind.INVALID_STATE, f"{user_id} is not banned")
        user.role = "user"
        user.ban_info = None
        self._save(USERS_KEY, _users, users)
        logger.info("User %s unbanned by %s", user_id, unbanned_by)
        return user

    @synchronized
    def is_user_banned(self, user_id: str) -> bool:
        """True while the user is banned. An expired ban is lifted here, on first check after expiry."""
        users = self.get_users()
        user = _find(users, user_id)
        if user is None or user.role != "banned":
            return False
        banned_until = user.ban_info.banned_until if user.ban_info else None
        if banned_until is not None and banned_until < self.clock():
            user.role = "user"
            user.ban_info = None
            self._save(USERS_KEY, _users, users)
            logger.info("Ban on %s expired at %s", user_id, banned_until)
            return False
        return True

    # ----------------- Session -----------------

    def get_current_user(self) -> Optional[User]:
        user = self._load(CURRENT_USER_KEY, _user, None)
        if user is None or self.is_user_banned(user.id):
            return None
        return user

    def set_current_user(self, user: Optional[User]) -> None:
        if user is None:
            self.backend.remove(CURRENT_USER_KEY)
        else:
            self._save(CURRENT_USER_KEY, _user, user)

    # ----------------- Posts -----------------

    def get_posts(self) -> List[Post]:
        return self._load(POSTS_KEY, _posts, [])

    def get_post_by_id(self, post_id: str) -> Optional[Post]:
        return _find(self.get_posts(), post_id)

    def get_posts_by_author(self, author_id: str) -> List[Post]:
        return [p for p in self.get_posts() if p.author_id == author_id and not p.is_deleted]

    def get_visible_post(self, post_id: str, viewer: Optional[User] = None) -> Union[Post, Failure]:
        """The post if the viewer may read it. Hidden posts look missing."""
        post = self.get_post_by_id(post_id)
        if post is None or not _can_see(post, viewer):
            return _fail(FailureKind.NOT_FOUND, f"post {post_id} does not exist")
        return post

    @synchronized
    def create_post(
        self,
        author_id: str,
        title: str,
        content: str,
        tag: str,
        visibility: str = "school",
        images: Optional[List[str]] = None,
    ) -> Union[Post, Failure]:
        if self.is_user_banned(author_id):
            return _fail(FailureKind.UNAUTHORIZED, f"user {author_id} is banned")
        users = self.get_users()
        author = _find(users, author_id)
        if author is None:
            return _fail(FailureKind.NOT_FOUND, f"user {author_id} does not exist")
        if tag not in self.get_tags():
            return _fail(FailureKind.INVALID_STATE, f"unknown tag {tag!r}")
        if visibility not in VISIBILITIES:
            return _fail(FailureKind.INVALID_STATE, f"unknown visibility {visibility!r}")
        post = Post(
            id=new_id("post"),
            author_id=author.id,
            author_name=author.nickname,
            author_avatar=author.avatar,
            author_year=author.enrollment_year,
            author_class=author.class_number,
            title=title,
            content=content,
            images=images or [],
            tag=tag,
            visibility=visibility,
            created_at=self.clock(),
        )
        posts = self.get_posts()
        posts.insert(0, post)
        author.post_count += 1
        self._save(POSTS_KEY, _posts, posts)
        self._save(USERS_KEY, _users, users)
        logger.debug("Post %s created by %s", post.id, author_id)
        return post

    @synchronized
    def update_post(self, post_id: str, **updates) -> Union[Post, Failure]:
        posts = self.get_posts()
        for index, current in enumerate(posts):
            if current.id == post_id:
                updated = _merge(Post, current, updates)
                if not updated:
                    return updated
                posts[index] = updated
                self._save(POSTS_KEY, _posts, posts)
                return posts[index]
        return _fail(FailureKind.NOT_FOUND, f"post {post_id} does not exist")

    def _soft_delete_post(self, post_id: str, actor_id: str, reason: Optional[str], own_only: bool):
        users = self.get_users()
        if not own_only:
            actor = self._actor_with_role(users, actor_id, MODERATOR_ROLES)
            if not actor:
                return actor
        posts = self.get_posts()
        post = _find(posts, post_id)
        if post is None:
            return _fail(FailureKind.NOT_FOUND, f"post {post_id} does not exist")
        if own_only and post.author_id != actor_id:
            return _fail(FailureKind.UNAUTHORIZED, f"post {post_id} does not belong to {actor_id}")
        if post.is_deleted:
            return _fail(FailureKind.INVALID_STATE, f"post {post_id} is already deleted")
        post.is_deleted = True
        post.deleted_at = self.clock()
        post.deleted_by = actor_id
        post.delete_reason = reason
        _bump(_find(users, post.author_id), "post_count", -1)
        self._save(POSTS_KEY, _posts, posts)
        self._save(USERS_KEY, _users, users)
        return True

    @synchronized
    def delete_post_by_admin(self, post_id: str, admin_id: str, reason: Optional[str] = None) -> Union[bool, Failure]:
        result = self._soft_delete_post(post_id, admin_id, reason, own_only=False)
        if result:
            logger.info("Post %s deleted by moderator %s: %s", post_id, admin_id, reason)
        return result

    @synchronized
    def delete_post_by_user(self, post_id: str, user_id: str) -> Union[bool, Failure]:
        return self._soft_delete_post(post_id, user_id, SELF_DELETE_REASON, own_only=True)

    @synchronized
    def restore_post(self, post_id: str, owner_id: str) -> Union[bool, Failure]:
        users = self.get_users()
        owner = self._actor_with_role(users, owner_id, ("owner",))
        if not owner:
            return owner
        posts = self.get_posts()
        post = _find(posts, post_id)
        if post is None:
            return _fail(FailureKind.NOT_FOUND, f"post {post_id} does not exist")
        if not post.is_deleted:
            return _fail(FailureKind.INVALID_STATE, f"post {post_id} is not deleted")
        post.is_deleted = False
        post.deleted_at = None
        post.deleted_by = None
        post.delete_reason = None
        _bump(_find(users, post.author_id), "post_count", 1)
        self._save(POSTS_KEY, _posts, posts)
        self._save(USERS_KEY, _users, users)
        logger.info("Post %s restored by %s", post_id, owner_id)
        return True

    @synchronized
    def permanently_delete_post(self, post_id: str, owner_id: str) -> Union[bool, Failure]:
        """Remove a post and its comments for good. A live post also leaves its author's post_count."""
        users = self.get_users()
        owner = self._actor_with_role(users, owner_id, ("owner",))
        if not owner:
            return owner
        posts = self.get_posts()
        post = _find(posts, post_id)
        if post is None:
            return _fail(FailureKind.NOT_FOUND, f"post {post_id} does not exist")
        self._save(POSTS_KEY, _posts, [p for p in posts if p.id != post_id])
        self._save(COMMENTS_KEY, _comments, [c for c in self.get_comments() if c.post_id != post_id])
        if not post.is_deleted:
            _bump(_find(users, post.author_id), "post_count", -1)
            self._save(USERS_KEY, _users, users)
        logger.info("Post %s permanently deleted by %s", post_id, owner_id)
        return True

    @synchronized
    def like_post(self, post_id: str, user_id: str) -> Union[bool, Failure]:
        posts = self.get_posts()
        post = _find(posts, post_id)
        if post is None:
            return _fail(FailureKind.NOT_FOUND, f"post {post_id} does not exist")
        if post.is_deleted:
            return _fail(FailureKind.INVALID_STATE, f"post {post_id} is deleted")
        if user_id in post.liked_by:
            return _fail(FailureKind.INVALID_STATE, f"{user_id} already likes {post_id}")
        post.liked_by.append(user_id)
        post.likes += 1
        users = self.get_users()
        _bump(_find(users, post.author_id), "like_count", 1)
        self._save(POSTS_KEY, _posts, posts)
        self._save(USERS_KEY, _users, users)
        return True

    @synchronized
    def unlike_post(self, post_id: str, user_id: str) -> Union[bool, Failure]:
        posts = self.get_posts()
        post = _find(posts, post_id)
        if post is None:
            return _fail(FailureKind.NOT_FOUND, f"post {post_id} does not exist")
        if user_id not in post.liked_by:
            return _fail(FailureKind.INVALID_STATE, f"{user_id} does not like {post_id}")
        post.liked_by = [uid for uid in post.liked_by if uid != user_id]
        post.likes = max(0, post.likes - 1)
        users = self.get_users()
        _bump(_find(users, post.author_id), "like_count", -1)
        self._save(POSTS_KEY, _posts, posts)
        self._save(USERS_KEY, _users, users)
        return True

    @synchronized
    def increment_views(self, post_id: str) -> Union[Post, Failure]:
        posts = self.get_posts()
        post = _find(posts, post_id)
        if post is None:
            return _fail(FailureKind.NOT_FOUND, f"post {post_id} does not exist")
        if post.is_deleted:
            return _fail(FailureKind.INVALID_STATE, f"post {post_id} is deleted")
        post.views += 1
        self._save(POSTS_KEY, _posts, posts)
        return post

    # ----------------- Comments -----------------

    def get_comments(self) -> List[Comment]:
        return self._load(COMMENTS_KEY, _comments, [])

    def get_comments_by_post(self, post_id: str) -> List[Comment]:
        return [c for c in self.get_comments() if c.post_id == post_id and not c.is_deleted]

    @synchronized
    def create_comment(
        self, post_id: str, author_id: str, content: str, parent_id: Optional[str] = None
    ) -> Union[Comment, Failure]:
        if self.is_user_banned(author_id):
            return _fail(FailureKind.UNAUTHORIZED, f"user {author_id} is banned")
        author = self.get_user_by_id(author_id)
        if author is None:
            return _fail(FailureKind.NOT_FOUND, f"user {author_id} does not exist")
        posts = self.get_posts()
        post = _find(posts, post_id)
        if post is None:
            return _fail(FailureKind.NOT_FOUND, f"post {post_id} does not exist")
        if post.is_deleted:
            return _fail(FailureKind.INVALID_STATE, f"post {post_id} is deleted")
        comment = Comment(
            id=new_id("comment"),
            post_id=post_id,
            author_id=author.id,
            author_name=author.nickname,
            author_avatar=author.avatar,
            content=content,
            parent_id=parent_id,
            created_at=self.clock(),
        )
        comments = self.get_comments()
        comments.append(comment)
        post.comments += 1
        self._save(COMMENTS_KEY, _comments, comments)
        self._save(POSTS_KEY, _posts, posts)
        return comment

    def _soft_delete_comment(self, comment_id: str, actor_id: str, own_only: bool):
        if not own_only:
            actor = self._actor_with_role(self.get_users(), actor_id, MODERATOR_ROLES)
            if not actor:
                return actor
        comments = self.get_comments()
        comment = _find(comments, comment_id)
        if comment is None:
            return _fail(FailureKind.NOT_FOUND, f"comment {comment_id} does not exist")
        if own_only and comment.author_id != actor_id:
            return _fail(FailureKind.UNAUTHORIZED, f"comment {comment_id} does not belong to {actor_id}")
        if comment.is_deleted:
            return _fail(FailureKind.INVALID_STATE, f"comment {comment_id} is already deleted")
        comment.is_deleted = True
        comment.deleted_at = self.clock()
        comment.deleted_by = actor_id
        posts = self.get_posts()
        post = _find(posts, comment.post_id)
        if post is not None:
            post.comments = max(0, post.comments - 1)
        self._save(COMMENTS_KEY, _comments, comments)
        self._save(POSTS_KEY, _posts, posts)
        return True

    @synchronized
    def delete_comment_by_admin(self, comment_id: str, admin_id: str) -> Union[bool, Failure]:
        result = self._soft_delete_comment(comment_id, admin_id, own_only=False)
        if result:
            logger.info("Comment %s deleted by moderator %s", comment_id, admin_id)
        return result

    @synchronized
    def delete_comment_by_user(self, comment_id: str, user_id: str) -> Union[bool, Failure]:
        return self._soft_delete_comment(comment_id, user_id, own_only=True)

    @synchronized
    def permanently_delete_comment(self, comment_id: str) -> Union[bool, Failure]:
        """Remove a comment for good. A live comment also leaves its post's comments counter."""
        comments = self.get_comments()
        comment = _find(comments, comment_id)
        if comment is None:
            return _fail(FailureKind.NOT_FOUND, f"comment {comment_id} does not exist")
        if not comment.is_deleted:
            posts = self.get_posts()
            post = _find(posts, comment.post_id)
            if post is not None:
                post.comments = max(0, post.comments - 1)
                self._save(POSTS_KEY, _posts, posts)
        self._save(COMMENTS_KEY, _comments, [c for c in comments if c.id != comment_id])
        return True

    # ----------------- Search -----------------

    def search_posts(
        self,
        keyword: Optional[str] = None,
        tag: Optional[str] = None,
        visibility: Optional[str] = None,
        current_user: Optional[User] = None,
        include_deleted: bool = False,
    ) -> List[Post]:
        """Posts the viewer may see, narrowed by keyword, tag and visibility, in stored order."""
        posts = self.get_posts()
        if not include_deleted:
            posts = [p for p in posts if not p.is_deleted]
        posts = [p for p in posts if _can_see(p, current_user)]
        if keyword:
            kw = keyword.lower()
            posts = [p for p in posts if kw in p.title.lower() or kw in p.content.lower()]
        if tag:
            posts = [p for p in posts if p.tag == tag]
        if visibility:
            posts = [p for p in posts if p.visibility == visibility]
        return posts

    def get_tag_counts(self, posts: Optional[List[Post]] = None) -> Dict[str, int]:
        if posts is None:
            posts = self.search_posts()
        return {tag: sum(1 for p in posts if p.tag == tag) for tag in self.get_tags()}

    def get_hot_posts(self, posts: Optional[List[Post]] = None, limit: int = 3) -> List[Post]:
        if posts is None:
            posts = self.search_posts()
        return sorted(posts, key=lambda p: p.likes, reverse=True)[:limit]
