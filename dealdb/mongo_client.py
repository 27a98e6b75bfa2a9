from __future__ import annotations
from pymongo import MongoClient
from pymongo.errors import ConnectionFailure

from . import errors
from .config_loader import Settings


def get_client(s: Settings) -> MongoClient:
    return MongoClient(
        s.mongo.uri,
        serverSelectionTimeoutMS=s.mongo.server_selection_timeout_ms,
        appname=s.mongo.appname,
    )


def ping(client) -> None:
    # Fail fast if the URI/network is misconfigured
    try:
        client.admin.command("ping")
    except ConnectionFailure as exc:
        raise errors.ConnectionError(str(exc), step="ping") from exc


def get_db(s: Settings):
    return get_client(s)[s.bootstrap.database]
