import time
import uuid
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def now_ms():
    return int(time.time() * 1000)


def new_id(prefix):
    return f"{prefix}_{uuid.uuid4().hex[:16]}"


class Record(BaseModel):
    """Base for stored records: camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_doc(self):
        return self.model_dump(by_alias=True)


class AppSchema(Record):
    app_name: str = "Untitled App"
    description: str = ""
    code: str


class GeneratedImage(Record):
    id: str = Field(default_factory=lambda: new_id("img"))
    prompt: str
    url: str
    created_at: int = Field(default_factory=now_ms)


class ChatMessage(Record):
    role: Literal["user", "assistant"]
    content: str = ""
    timestamp: int = Field(default_factory=now_ms)
    is_streaming: Optional[bool] = None
    stream_content: Optional[str] = None

    @classmethod
    def user(cls, content):
        return cls(role="user", content=content)

    @classmethod
    def placeholder(cls):
        return cls(role="assistant", content="", is_streaming=True, stream_content="")

    def streaming(self, buffer):
        return self.model_copy(update={"stream_content": buffer})

    def finalized(self, content):
        return self.model_copy(update={
            "content": content,
            "is_streaming": None,
            "stream_content": None,
        })

    def to_doc(self):
        return self.model_dump(by_alias=True, exclude_none=True)


class Project(Record):
    id: str = Field(default_factory=lambda: new_id("proj"))
    user_id: str
    name: str = "Untitled Project"
    description: str = ""
    code: str = ""
    messages: List[ChatMessage] = Field(default_factory=list)
    images: List[GeneratedImage] = Field(default_factory=list)
    is_public: bool = False
    created_at: int = Field(default_factory=now_ms)
    updated_at: int = Field(default_factory=now_ms)

    def to_doc(self):
        doc = self.model_dump(by_alias=True)
        doc["messages"] = [m.to_doc() for m in self.messages]
        return doc


class User(Record):
    id: str = Field(default_factory=lambda: new_id("user"))
    email: str
    name: str
    photo_url: Optional[str] = Field(default=None, alias="photoURL")
    free_credits: int = 0
    purchased_credits: int = 0
    last_daily_reset: int = Field(default_factory=now_ms)
    is_banned: bool = False
    is_anonymous: bool = False
    created_at: int = Field(default_factory=now_ms)
    password_hash: Optional[str] = None

    def public_doc(self):
        return self.model_dump(by_alias=True, exclude={"password_hash"})


class Transaction(Record):
    id: str = Field(default_factory=lambda: new_id("tx"))
    user_id: str
    amount: int
    cost: float = 0.0
    type: Literal["purchase", "daily_reset", "bonus"]
    timestamp: int = Field(default_factory=now_ms)
