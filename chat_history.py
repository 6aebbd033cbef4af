import json
import logging
import os
import uuid
from datetime import datetime
from pathlib import Path
from typing import List, Literal, Optional
from urllib.parse import quote

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError

from extraction import Candidate, ChatTurn, ExtractionResult

load_dotenv()

logger = logging.getLogger(__name__)

# Environment variables
S3_BUCKET = os.environ.get("S3_BUCKET")
AWS_REGION = os.environ.get("AWS_REGION", "us-east-1")
CHAT_HISTORY_DIR = os.environ.get("CHAT_HISTORY_DIR", "chat_history")

FOLDER = "chat_history"
GREETING_TEXT = "Halo! Ada pengeluaran atau pemasukan apa hari ini?"


class ChatMessage(BaseModel):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    role: Literal["user", "assistant"]
    content: str
    timestamp: datetime = Field(default_factory=datetime.now)
    transaction: Optional[Candidate] = None
    saved: bool = False
    media_type: Optional[Literal["image", "voice"]] = None


def greeting() -> ChatMessage:
    return ChatMessage(id="default", role="assistant", content=GREETING_TEXT)


def get_s3_client():
    return boto3.client("s3", region_name=AWS_REGION)


class ChatHistoryStore:
    """
    Per-user chat history, one JSON document per user on S3 or local disk.
    """

    def __init__(self, bucket: Optional[str] = None, root: Optional[str] = None, s3_client=None):
        self.bucket = bucket if bucket is not None else S3_BUCKET
        self.root = Path(root or CHAT_HISTORY_DIR)
        self._s3 = s3_client

    @property
    def s3(self):
        if self._s3 is None:
            self._s3 = get_s3_client()
        return self._s3

    @staticmethod
    def _filename(user_id: str) -> str:
        # Percent-encoded, so a user id never contains a path separator.
        return quote(user_id, safe="") + ".json"

    def _key(self, user_id: str) -> str:
        return f"{FOLDER}/{self._filename(user_id)}"

    def _path(self, user_id: str) -> Path:
        return self.root / self._filename(user_id)

    def _read(self, user_id: str) -> Optional[str]:
        if self.bucket:
            try:
                obj = self.s3.get_object(Bucket=self.bucket, Key=self._key(user_id))
                return obj["Body"].read().decode("utf-8")
            except self.s3.exceptions.NoSuchKey:
                return None
        path = self._path(user_id)
        if path.exists():
            return path.read_text(encoding="utf-8")
        return None

    def load(self, user_id: str) -> List[ChatMessage]:
        """
        Loads a user's history; missing or unreadable history starts over with the greeting.
        """
        try:
            raw = self._read(user_id)
        except (BotoCoreError, ClientError, OSError):
            logger.exception("Chat history download failed for user %s", user_id)
            return [greeting()]
        if not raw:
            return [greeting()]

        try:
            messages = [ChatMessage.model_validate(m) for m in json.loads(raw)]
        except (ValueError, TypeError, ValidationError):
            logger.warning("Discarding unreadable chat history for user %s", user_id)
            return [greeting()]
        return messages or [greeting()]

    def save(self, user_id: str, messages: List[ChatMessage]) -> bool:
        """
        Saves a user's history to either S3 or local disk.
        """
        body = json.dumps([m.model_dump(mode="json") for m in messages], ensure_ascii=False)
        if self.bucket:
            try:
                self.s3.put_object(Bucket=self.bucket, Key=self._key(user_id), Body=body.encode("utf-8"))
                return True
            except (BotoCoreError, ClientError):
                logger.exception("Chat history upload failed for user %s", user_id)
                return False

        path = self._path(user_id)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(body, encoding="utf-8")
        except OSError:
            logger.exception("Chat history write failed for user %s", user_id)
            return False
        return True

    def clear(self, user_id: str) -> bool:
        if self.bucket:
            try:
                self.s3.delete_object(Bucket=self.bucket, Key=self._key(user_id))
                return True
            except (BotoCoreError, ClientError):
                logger.exception("Chat history delete failed for user %s", user_id)
                return False
        self._path(user_id).unlink(missing_ok=True)
        return True


class ChatSession:
    """One user's conversation, loaded and saved explicitly at session boundaries."""

    def __init__(self, store: ChatHistoryStore, user_id: str, messages: List[ChatMessage]):
        self.store = store
        self.user_id = user_id
        self.messages = messages

    @classmethod
    def open(cls, store: ChatHistoryStore, user_id: str) -> "ChatSession":
        return cls(store, user_id, store.load(user_id))

    def add_user_turn(self, turn: ChatTurn) -> ChatMessage:
        media_type = None
        content = turn.message or ""
        if turn.media is not None:
            if turn.media.mime_type.startswith("audio/"):
                media_type, content = "voice", "Voice Note"
            else:
                media_type, content = "image", "Foto Struk"
        message = ChatMessage(role="user", content=content, media_type=media_type)
        self.messages.append(message)
        return message

    def add_assistant_reply(self, result: ExtractionResult, saved: bool) -> ChatMessage:
        message = ChatMessage(
            role="assistant",
            content=result.reply,
            transaction=result.transaction,
            saved=saved,
        )
        self.messages.append(message)
        return message

    def save(self) -> bool:
        return self.store.save(self.user_id, self.messages)
