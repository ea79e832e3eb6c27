import logging
import os
from typing import List, Optional

from fastapi import Depends, FastAPI, Header, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from database import get_backend
from schemas import Announcement, Comment, Post, SystemSettings, UserProfile, Visibility
from store import Failure, FailureKind, Store

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="School Forum API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

store = Store(get_backend(), seed=os.getenv("FORUM_SEED_DEMO", "1") != "0")

FAILURE_STATUS = {
    FailureKind.UNAUTHORIZED: 403,
    FailureKind.NOT_FOUND: 404,
    FailureKind.INVALID_STATE: 409,
}


def get_store() -> Store:
    return store


# Store results are either the value or a falsy Failure

def unwrap(result):
    if isinstance(result, Failure):
        raise HTTPException(status_code=FAILURE_STATUS[result.kind], detail=result.reason)
    return result


def to_public(user) -> dict:
    if user is None:
        return user
    d = user.model_dump(mode="json")
    d.pop("password", None)
    return d


@app.get("/")
def read_root():
    return {"message": "School Forum API is running"}


# --------- Acting user (demo: taken from a header, no tokens) ---------

def get_actor_id(x_user_id: Optional[str] = Header(None)) -> str:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="X-User-Id header required")
    return x_user_id


def get_optional_actor(x_user_id: Optional[str] = Header(None), st: Store = Depends(get_store)):
    if not x_user_id:
        return None
    actor = st.get_user_by_id(x_user_id)
    if actor is None:
        raise HTTPException(status_code=401, detail="Unknown X-User-Id")
    return actor


# ----------------- Auth -----------------
class RegisterRequest(BaseModel):
    username: str
    nickname: str
    enrollment_year: int
    class_number: int
    password: str
    confirm_password: Optional[str] = None
    avatar: Optional[str] = None


class LoginRequest(BaseModel):
    username: str
    password: str


@app.post("/api/auth/register")
def register(req: RegisterRequest, st: Store = Depends(get_store)):
    user = unwrap(st.register(**req.model_dump()))
    return to_public(user)


@app.post("/api/auth/login")
def login(req: LoginRequest, st: Store = Depends(get_store)):
    result = st.login(req.username, req.password)
    if isinstance(result, Failure):
        logger.info("Rejected login for %r: %s", req.username, result.kind.value)
    if isinstance(result, Failure) and result.kind == FailureKind.UNAUTHORIZED:
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return to_public(unwrap(result))


# ----------------- Users -----------------
class AvatarRequest(BaseModel):
    avatar: str


class BanRequest(BaseModel):
    reason: Optional[str] = None
    duration_days: Optional[float] = Field(None, gt=0, description="Omit for an indefinite ban")


@app.get("/api/users")
def list_users(st: Store = Depends(get_store)):
    return [to_public(u) for u in st.get_users()]


@app.get("/api/users/{user_id}")
def get_user(user_id: str, st: Store = Depends(get_store)):
    user = st.get_user_by_id(user_id)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    return to_public(user)


@app.put("/api/users/{user_id}/profile")
def update_profile(user_id: str, profile: UserProfile, actor_id: str = Depends(get_actor_id), st: Store = Depends(get_store)):
    if actor_id != user_id:
        raise HTTPException(status_code=403, detail="Can only edit your own profile")
    return to_public(unwrap(st.update_user_profile(user_id, profile)))


@app.put("/api/users/{user_id}/avatar")
def update_avatar(user_id: str, req: AvatarRequest, actor_id: str = Depends(get_actor_id), st: Store = Depends(get_store)):
    if actor_id != user_id:
        raise HTTPException(status_code=403, detail="Can only change your own avatar")
    return to_public(unwrap(st.update_user_avatar(user_id, req.avatar)))


@app.delete("/api/users/{user_id}")
def delete_user(user_id: str, actor_id: str = Depends(get_actor_id), st: Store = Depends(get_store)):
    return {"deleted": unwrap(st.delete_user(user_id, actor_id))}


@app.post("/api/users/{user_id}/admin")
def appoint_admin(user_id: str, actor_id: str = Depends(get_actor_id), st: Store = Depends(get_store)):
    return to_public(unwrap(st.appoint_admin(user_id, actor_id)))


@app.delete("/api/users/{user_id}/admin")
def remove_admin(user_id: str, actor_id: str = Depends(get_actor_id), st: Store = Depends(get_store)):
    return to_public(unwrap(st.remove_admin(user_id, actor_id)))


@app.post("/api/users/{user_id}/ban")
def ban_user(user_id: str, req: BanRequest, actor_id: str = Depends(get_actor_id), st: Store = Depends(get_store)):
    return to_public(unwrap(st.ban_user(user_id, actor_id, req.reason, req.duration_days)))


@app.delete("/api/users/{user_id}/ban")
def unban_user(user_id: str, actor_id: str = Depends(get_actor_id), st: Store = Depends(get_store)):
    return to_public(unwrap(st.unban_user(user_id, actor_id)))


# ----------------- Posts -----------------
class PostRequest(BaseModel):
    title: str = Field(..., min_length=1)
    content: str = Field(..., min_length=1)
    tag: str
    visibility: Visibility = "school"
    images: List[str] = Field(default_factory=list)


@app.get("/api/posts", response_model=List[Post])
def search_posts(
    keyword: Optional[str] = None,
    tag: Optional[str] = None,
    visibility: Optional[Visibility] = None,
    include_deleted: bool = False,
    actor=Depends(get_optional_actor),
    st: Store = Depends(get_store),
):
    if include_deleted and (actor is None or actor.role != "owner"):
        raise HTTPException(status_code=403, detail="Only the owner can list deleted posts")
    return st.search_posts(
        keyword=keyword,
        tag=tag,
        visibility=visibility,
        current_user=actor,
        include_deleted=include_deleted,
    )


@app.get("/api/posts/hot", response_model=List[Post])
def hot_posts(limit: int = 3, actor=Depends(get_optional_actor), st: Store = Depends(get_store)):
    return st.get_hot_posts(st.search_posts(current_user=actor), limit=limit)


@app.post("/api/posts", response_model=Post)
def create_post(req: PostRequest, actor_id: str = Depends(get_actor_id), st: Store = Depends(get_store)):
    return unwrap(st.create_post(actor_id, **req.model_dump()))


@app.get("/api/posts/{post_id}", response_model=Post)
def view_post(post_id: str, actor=Depends(get_optional_actor), st: Store = Depends(get_store)):
    unwrap(st.get_visible_post(post_id, actor))
    return unwrap(st.increment_views(post_id))


@app.delete("/api/posts/{post_id}")
def delete_post(post_id: str, reason: Optional[str] = None, actor_id: str = Depends(get_actor_id), st: Store = Depends(get_store)):
    post = st.get_post_by_id(post_id)
    if post is not None and post.author_id == actor_id:
        return {"deleted": unwrap(st.delete_post_by_user(post_id, actor_id))}
    return {"deleted": unwrap(st.delete_post_by_admin(post_id, actor_id, reason))}


@app.post("/api/posts/{post_id}/restore")
def restore_post(post_id: str, actor_id: str = Depends(get_actor_id), st: Store = Depends(get_store)):
    return {"restored": unwrap(st.restore_post(post_id, actor_id))}


@app.delete("/api/posts/{post_id}/permanent")
def purge_post(post_id: str, actor_id: str = Depends(get_actor_id), st: Store = Depends(get_store)):
    return {"deleted": unwrap(st.permanently_delete_post(post_id, actor_id))}


# ----------------- Likes -----------------
@app.post("/api/posts/{post_id}/likes")
def like_post(post_id: str, actor_id: str = Depends(get_actor_id), st: Store = Depends(get_store)):
    return {"liked": unwrap(st.like_post(post_id, actor_id))}


@app.delete("/api/posts/{post_id}/likes")
def unlike_post(post_id: str, actor_id: str = Depends(get_actor_id), st: Store = Depends(get_store)):
    return {"unliked": unwrap(st.unlike_post(post_id, actor_id))}


# ----------------- Comments -----------------
class CommentRequest(BaseModel):
    content: str = Field(..., min_length=1)
    parent_id: Optional[str] = None


@app.get("/api/posts/{post_id}/comments", response_model=List[Comment])
def list_comments(post_id: str, actor=Depends(get_optional_actor), st: Store = Depends(get_store)):
    unwrap(st.get_visible_post(post_id, actor))
    return st.get_comments_by_post(post_id)


@app.post("/api/posts/{post_id}/comments", response_model=Comment)
def create_comment(post_id: str, req: CommentRequest, actor_id: str = Depends(get_actor_id), st: Store = Depends(get_store)):
    return unwrap(st.create_comment(post_id, actor_id, req.content, req.parent_id))


@app.delete("/api/comments/{comment_id}")
def delete_comment(comment_id: str, actor_id: str = Depends(get_actor_id), st: Store = Depends(get_store)):
    comment = next((c for c in st.get_comments() if c.id == comment_id), None)
    if comment is not None and comment.author_id == actor_id:
        return {"deleted": unwrap(st.delete_comment_by_user(comment_id, actor_id))}
    return {"deleted": unwrap(st.delete_comment_by_admin(comment_id, actor_id))}


# ----------------- Tags & Settings -----------------
class TagRequest(BaseModel):
    tag: str = Field(..., min_length=1)


class SettingsUpdate(BaseModel):
    enrollment_years: Optional[List[int]] = None
    class_numbers: Optional[List[int]] = None
    allow_registration: Optional[bool] = None
    owner_username: Optional[str] = None


@app.get("/api/tags")
def list_tags(actor=Depends(get_optional_actor), st: Store = Depends(get_store)):
    return st.get_tag_counts(st.search_posts(current_user=actor))


@app.post("/api/tags")
def add_tag(req: TagRequest, actor_id: str = Depends(get_actor_id), st: Store = Depends(get_store)):
    return {"added": unwrap(st.add_tag(actor_id, req.tag))}


@app.delete("/api/tags/{tag}")
def remove_tag(tag: str, actor_id: str = Depends(get_actor_id), st: Store = Depends(get_store)):
    return {"removed": unwrap(st.remove_tag(actor_id, tag))}


@app.get("/api/settings", response_model=SystemSettings)
def get_settings(st: Store = Depends(get_store)):
    return st.get_settings()


@app.patch("/api/settings", response_model=SystemSettings)
def update_settings(req: SettingsUpdate, actor_id: str = Depends(get_actor_id), st: Store = Depends(get_store)):
    return unwrap(st.update_settings(actor_id, **req.model_dump(exclude_unset=True)))


# ----------------- Announcements -----------------
class AnnouncementRequest(BaseModel):
    title: str = Field(..., min_length=1)
    content: str = Field(..., min_length=1)
    is_active: bool = True


class AnnouncementUpdate(BaseModel):
    title: Optional[str] = None
    content: Optional[str] = None
    is_active: Optional[bool] = None


def require_owner(actor_id: str = Depends(get_actor_id), st: Store = Depends(get_store)) -> str:
    actor = st.get_user_by_id(actor_id)
    if actor is None or actor.role != "owner":
        raise HTTPException(status_code=403, detail="Owner only")
    return actor_id


@app.get("/api/announcements", response_model=List[Announcement])
def list_announcements(active_only: bool = True, st: Store = Depends(get_store)):
    if active_only:
        return st.get_active_announcements()
    return st.get_announcements()


@app.post("/api/announcements", response_model=Announcement)
def create_announcement(req: AnnouncementRequest, owner_id: str = Depends(require_owner), st: Store = Depends(get_store)):
    return unwrap(st.create_announcement(owner_id, req.title, req.content, req.is_active))


@app.patch("/api/announcements/{announcement_id}", response_model=Announcement)
def update_announcement(announcement_id: str, req: AnnouncementUpdate, owner_id: str = Depends(require_owner), st: Store = Depends(get_store)):
    return unwrap(st.update_announcement(announcement_id, **req.model_dump(exclude_unset=True)))


@app.delete("/api/announcements/{announcement_id}")
def delete_announcement(announcement_id: str, owner_id: str = Depends(require_owner), st: Store = Depends(get_store)):
    return {"deleted": unwrap(st.delete_announcement(announcement_id))}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
