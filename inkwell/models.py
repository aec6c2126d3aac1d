from __future__ import annotations

import json
import secrets
import string
import time
from datetime import datetime
from typing import Any, Dict, List, Optional

from flask_login import UserMixin
from werkzeug.security import check_password_hash, generate_password_hash

from .extensions import db, login_manager

PARAGRAPH_SEPARATOR = "\n\n"
_VERSION_ALPHABET = string.ascii_lowercase + string.digits


def generate_version_id() -> str:
    suffix = "".join(secrets.choice(_VERSION_ALPHABET) for _ in range(7))
    return f"v-{int(time.time() * 1000)}-{suffix}"


def content_size_kb(content: Optional[str]) -> int:
    return round(len((content or "").encode("utf-8")) / 1024)


class User(UserMixin, db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(255), nullable=False)
    display_name = db.Column(db.String(120), nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    stories = db.relationship("Story", backref="owner", lazy=True, cascade="all, delete-orphan")

    def set_password(self, password: str) -> None:
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        return check_password_hash(self.password_hash, password)

    def __repr__(self) -> str:  # pragma: no cover - repr for debugging
        return f"<User {self.email}>"


@login_manager.user_loader
def load_user(user_id: str) -> Optional["User"]:
    return db.session.get(User, int(user_id))


class Story(db.Model):
    __tablename__ = "stories"

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(200), nullable=False)
    content = db.Column(db.Text, nullable=True)
    summary = db.Column(db.Text, nullable=True)
    outline = db.Column(db.Text, nullable=True)
    world_setting = db.Column(db.Text, nullable=True)
    story_status = db.Column(db.String(50), nullable=False, default="in_progress")
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    owner_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    chapters = db.relationship(
        "Chapter",
        backref="story",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="Chapter.sequence",
    )
    characters = db.relationship(
        "Character",
        backref="story",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="Character.name",
    )
    versions = db.relationship(
        "StoryVersion",
        backref="story",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="StoryVersion.created_at.desc()",
    )

    def __repr__(self) -> str:  # pragma: no cover
        return f"<Story {self.title} ({self.story_status})>"

    @property
    def paragraphs(self) -> List[str]:
        if not self.content:
            return []
        return self.content.split(PARAGRAPH_SEPARATOR)

    def to_dict(self, *, include_children: bool = False) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "content": self.paragraphs,
            "summary": self.summary,
            "outline": self.outline,
            "worldSetting": self.world_setting,
            "storyStatus": self.story_status,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_children:
            payload["chapters"] = [chapter.to_dict() for chapter in self.chapters]
            payload["characters"] = [character.to_dict() for character in self.characters]
        return payload


class Chapter(db.Model):
    __tablename__ = "chapters"

    id = db.Column(db.Integer, primary_key=True)
    story_id = db.Column(db.Integer, db.ForeignKey("stories.id"), nullable=False, index=True)
    title = db.Column(db.String(200), nullable=False)
    content = db.Column(db.Text, nullable=False, default="")
    sequence = db.Column(db.Integer, nullable=False, default=1, index=True)
    summary = db.Column(db.Text, nullable=True)
    notes = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __repr__(self) -> str:  # pragma: no cover
        return f"<Chapter {self.sequence}: {self.title}>"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "storyId": self.story_id,
            "title": self.title,
            "content": self.content,
            "order": self.sequence,
            "summary": self.summary,
            "notes": self.notes,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }


class Character(db.Model):
    __tablename__ = "characters"

    id = db.Column(db.Integer, primary_key=True)
    story_id = db.Column(db.Integer, db.ForeignKey("stories.id"), nullable=False, index=True)
    owner_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    name = db.Column(db.String(120), nullable=False)
    description = db.Column(db.Text, nullable=True)
    attributes = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __repr__(self) -> str:  # pragma: no cover
        return f"<Character {self.name}>"

    @property
    def attributes_dict(self) -> Dict[str, Any]:
        if not self.attributes:
            return {}
        try:
            parsed = json.loads(self.attributes)
        except json.JSONDecodeError:
            return {"notes": self.attributes}
        return parsed if isinstance(parsed, dict) else {"value": parsed}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "storyId": self.story_id,
            "name": self.name,
            "description": self.description,
            "attributes": self.attributes_dict,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }


class StoryVersion(db.Model):
    __tablename__ = "story_versions"

    id = db.Column(db.Integer, primary_key=True)
    story_id = db.Column(db.Integer, db.ForeignKey("stories.id"), nullable=False, index=True)
    version_id = db.Column(db.String(64), nullable=False, index=True)
    content = db.Column(db.Text, nullable=False, default="")
    description = db.Column(db.String(255), nullable=True)
    change_type = db.Column(db.String(50), nullable=False, default="manual")
    created_by = db.Column(db.String(255), nullable=True)
    size = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self) -> str:  # pragma: no cover
        return f"<StoryVersion {self.version_id} ({self.change_type})>"

    def to_dict(self, *, include_content: bool = False) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "id": self.id,
            "versionId": self.version_id,
            "description": self.description,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "createdBy": self.created_by,
            "changeType": self.change_type,
            "size": self.size,
        }
        if include_content:
            payload["content"] = self.content
        return payload
