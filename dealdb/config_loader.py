from __future__ import annotations
from enum import Enum
from pathlib import Path
import logging
import os

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator, model_validator
import yaml

logger = logging.getLogger(__name__)

BUILTIN_DB_ROLES = ("read", "readWrite", "dbAdmin", "dbOwner", "userAdmin")


class IfExists(str, Enum):
    """What a step does when its target already exists on the server."""

    SKIP = "skip"
    ERROR = "error"
    REPLACE = "replace"


class MongoConfig(BaseModel):
    uri: str = Field(default="mongodb://localhost:27017")
    server_selection_timeout_ms: int = Field(default=5000)
    appname: str = Field(default="dealdb")


class CredentialConfig(BaseModel):
    name: str = Field(default="app_user")
    secret: str
    role: str = Field(default="readWrite")
    if_exists: IfExists = Field(default=IfExists.SKIP)

    @field_validator("role")
    @classmethod
    def _known_role(cls, v: str) -> str:
        if v not in BUILTIN_DB_ROLES:
            raise ValueError(f"role must be one of {', '.join(BUILTIN_DB_ROLES)}, got {v!r}")
        return v


class CollectionSpec(BaseModel):
    name: str
    if_exists: IfExists = Field(default=IfExists.SKIP)

    @field_validator("if_exists")
    @classmethod
    def _no_replace(cls, v: IfExists) -> IfExists:
        # dropping a collection would take its documents with it
        if v is IfExists.REPLACE:
            raise ValueError("collections support only 'skip' or 'error'")
        return v


class IndexSpec(BaseModel):
    collection: str
    keys: dict[str, int]
    unique: bool = False
    sparse: bool = False
    partial_filter: dict | None = None
    expire_after_seconds: int | None = None
    name: str | None = None
    if_exists: IfExists = Field(default=IfExists.SKIP)

    @field_validator("keys")
    @classmethod
    def _directions(cls, v: dict[str, int]) -> dict[str, int]:
        if not v:
            raise ValueError("index keys must name at least one field")
        for field, direction in v.items():
            if direction not in (1, -1):
                raise ValueError(f"direction for {field!r} must be 1 or -1, got {direction!r}")
        return v

    @property
    def key_list(self) -> list[tuple[str, int]]:
        return list(self.keys.items())

    @property
    def options(self) -> dict:
        """Server-side index options, spelled the way ``create_index`` takes them."""
        opts: dict = {}
        if self.unique:
            opts["unique"] = True
        if self.sparse:
            opts["sparse"] = True
        if self.partial_filter is not None:
            opts["partialFilterExpression"] = self.partial_filter
        if self.expire_after_seconds is not None:
            opts["expireAfterSeconds"] = self.expire_after_seconds
        return opts

    @property
    def index_name(self) -> str:
        """Explicit name, or the server's default ``field_dir`` naming."""
        if self.name:
            return self.name
        return "_".join(f"{field}_{direction}" for field, direction in self.keys.items())


def _default_collections() -> list[CollectionSpec]:
    return [CollectionSpec(name=n) for n in ("deals", "users", "stages")]


def _default_indexes() -> list[IndexSpec]:
    return [
        IndexSpec(collection="deals", keys={"createdAt": 1}),
        IndexSpec(collection="deals", keys={"status": 1}),
        IndexSpec(collection="users", keys={"email": 1}, unique=True),
        IndexSpec(collection="stages", keys={"pipelineId": 1}),
    ]


class BootstrapConfig(BaseModel):
    database: str = Field(default="deal_pipeline_db")
    credential: CredentialConfig
    collections: list[CollectionSpec] = Field(default_factory=_default_collections)
    indexes: list[IndexSpec] = Field(default_factory=_default_indexes)

    @field_validator("collections", mode="before")
    @classmethod
    def _plain_names(cls, v):
        if isinstance(v, list):
            return [{"name": item} if isinstance(item, str) else item for item in v]
        return v

    @model_validator(mode="after")
    def _unique_names(self) -> "BootstrapConfig":
        names = [c.name for c in self.collections]
        if len(names) != len(set(names)):
            raise ValueError("collection names must be unique within the database")
        seen: set[tuple[str, str]] = set()
        for idx in self.indexes:
            key = (idx.collection, idx.index_name)
            if key in seen:
                raise ValueError(f"duplicate index {idx.index_name} on {idx.collection}")
            seen.add(key)
        return self


class Settings(BaseModel):
    mongo: MongoConfig = Field(default_factory=MongoConfig)
    bootstrap: BootstrapConfig


def _load_yaml(path: str | os.PathLike) -> dict:
    p = Path(path)
    if not p.exists():
        logger.error(f"Config file {p} does not exist")
        return {}
    with p.open("r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _drop_none(d: dict) -> dict:
    return {k: v for k, v in d.items() if v is not None}


def load_settings(config_path: str = "config.yaml") -> Settings:
    load_dotenv(override=False)

    data = _load_yaml(config_path)
    mongo = data.get("mongo", {}) or {}
    boot = data.get("bootstrap", {}) or {}
    cred = boot.get("credential", {}) or {}

    # Allow env overrides for connection details and secrets
    env_overrides = {
        "mongo": _drop_none({"uri": os.getenv("MONGODB_URI", mongo.get("uri"))}),
        "bootstrap": _drop_none({"database": os.getenv("MONGODB_DB", boot.get("database"))}),
        "credential": _drop_none(
            {
                "name": os.getenv("APP_DB_USER", cred.get("name")),
                "secret": os.getenv("APP_DB_PASSWORD", cred.get("secret")),
            }
        ),
    }

    # Merge shallowly
    merged = {
        **data,
        "mongo": {**mongo, **env_overrides["mongo"]},
        "bootstrap": {
            **boot,
            **env_overrides["bootstrap"],
            "credential": {**cred, **env_overrides["credential"]},
        },
    }
    return Settings(**merged)
