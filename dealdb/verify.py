"""Post-bootstrap checks.

Read-only: each check inspects the server and reports what differs from the
configured layout. An empty list means the database is initialized.
"""
from __future__ import annotations
from typing import List

from .config_loader import BootstrapConfig
from .bootstrap.steps import existing_roles, index_options, normalize_key


def _check_credential(db, config: BootstrapConfig) -> List[str]:
    cred = config.credential
    roles = existing_roles(db, cred.name)
    if roles is None:
        return [f"credential {cred.name} is missing"]
    expected = [{"role": cred.role, "db": config.database}]
    if roles != expected:
        return [f"credential {cred.name} has roles {roles}, expected {expected}"]
    return []


def _check_collections(db, config: BootstrapConfig) -> List[str]:
    present = set(db.list_collection_names())
    return [f"collection {c.name} is missing" for c in config.collections if c.name not in present]


def _check_indexes(db, config: BootstrapConfig) -> List[str]:
    problems: List[str] = []
    for spec in config.indexes:
        info = db[spec.collection].index_information()
        opts = info.get(spec.index_name)
        where = f"{spec.collection}.{spec.index_name}"
        if opts is None:
            problems.append(f"index {where} is missing")
            continue
        if normalize_key(opts.get("key", [])) != spec.key_list:
            problems.append(f"index {where} has keys {opts.get('key')}, expected {spec.key_list}")
        if index_options(opts) != spec.options:
            problems.append(f"index {where} has options {index_options(opts)}, expected {spec.options}")
    return problems


def verify_database(db, config: BootstrapConfig) -> List[str]:
    return _check_credential(db, config) + _check_collections(db, config) + _check_indexes(db, config)
