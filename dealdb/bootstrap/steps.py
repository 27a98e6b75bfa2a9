from __future__ import annotations
from enum import Enum

from ..config_loader import BootstrapConfig, CollectionSpec, CredentialConfig, IfExists, IndexSpec
from ..errors import BootstrapError, CollectionExistsError, DuplicateCredentialError, IndexConflictError

CREATED = "created"
SKIPPED = "skipped"
REPLACED = "replaced"


class Stage(str, Enum):
    START = "start"
    DATABASE_SELECTED = "database_selected"
    CREDENTIAL_CREATED = "credential_created"
    COLLECTIONS_CREATED = "collections_created"
    INDEXES_CREATED = "indexes_created"
    DONE = "done"


class Step:
    """One named administrative operation with an explicit if-exists policy.

    ``stage`` is the stage the run reaches once every step of this kind has
    been applied.
    """

    stage: Stage

    def __init__(self, if_exists: IfExists):
        self.if_exists = if_exists

    @property
    def name(self) -> str:
        raise NotImplementedError

    def describe(self) -> str:
        return self.name

    def exists(self, db) -> bool:
        raise NotImplementedError

    def create(self, db) -> None:
        raise NotImplementedError

    def replace(self, db) -> None:
        raise NotImplementedError(f"{self.name} cannot be replaced")

    def already_exists(self) -> BootstrapError:
        raise NotImplementedError

    def apply(self, db) -> str:
        if not self.exists(db):
            self.create(db)
            return CREATED
        if self.if_exists is IfExists.SKIP:
            return SKIPPED
        if self.if_exists is IfExists.ERROR:
            raise self.already_exists()
        self.replace(db)
        return REPLACED


def existing_roles(db, name: str) -> list[dict] | None:
    """Roles held by credential ``name`` on ``db``, or None if it does not exist."""
    users = db.command("usersInfo", name).get("users", [])
    if not users:
        return None
    return [{"role": r.get("role"), "db": r.get("db")} for r in users[0].get("roles", [])]


class CreateUser(Step):
    stage = Stage.CREDENTIAL_CREATED

    def __init__(self, credential: CredentialConfig, database: str):
        super().__init__(credential.if_exists)
        self.credential = credential
        self.database = database

    @property
    def name(self) -> str:
        return f"create_user:{self.credential.name}"

    @property
    def roles(self) -> list[dict]:
        # exactly one role, scoped to the bootstrap database
        return [{"role": self.credential.role, "db": self.database}]

    def describe(self) -> str:
        return f"{self.name} {self.credential.role}@{self.database}"

    def exists(self, db) -> bool:
        return existing_roles(db, self.credential.name) is not None

    def create(self, db) -> None:
        db.command("createUser", self.credential.name, pwd=self.credential.secret, roles=self.roles)

    def apply(self, db) -> str:
        roles = existing_roles(db, self.credential.name)
        if roles is not None and self.if_exists is IfExists.SKIP and roles != self.roles:
            raise DuplicateCredentialError(
                f"credential {self.credential.name} exists with roles {roles}, expected {self.roles}",
                step=self.name,
            )
        return super().apply(db)

    def replace(self, db) -> None:
        db.command("updateUser", self.credential.name, pwd=self.credential.secret, roles=self.roles)

    def already_exists(self) -> BootstrapError:
        return DuplicateCredentialError(
            f"credential {self.credential.name} already exists on {self.database}", step=self.name
        )


class CreateCollection(Step):
    stage = Stage.COLLECTIONS_CREATED

    def __init__(self, spec: CollectionSpec):
        super().__init__(spec.if_exists)
        self.spec = spec

    @property
    def name(self) -> str:
        return f"create_collection:{self.spec.name}"

    def exists(self, db) -> bool:
        return self.spec.name in db.list_collection_names()

    def create(self, db) -> None:
        db.create_collection(self.spec.name)

    def already_exists(self) -> BootstrapError:
        return CollectionExistsError(f"collection {self.spec.name} already exists", step=self.name)


INDEX_OPTIONS = ("unique", "sparse", "partialFilterExpression", "expireAfterSeconds")


def normalize_key(key) -> list[tuple[str, object]]:
    return [(field, d if isinstance(d, str) else int(d)) for field, d in key]


def index_options(opts: dict) -> dict:
    """The options of an ``index_information`` entry that change index behaviour."""
    found = {}
    for option in INDEX_OPTIONS:
        value = opts.get(option)
        if value is None or value is False:
            continue
        found[option] = value
    return found


class CreateIndex(Step):
    stage = Stage.INDEXES_CREATED

    def __init__(self, spec: IndexSpec):
        super().__init__(spec.if_exists)
        self.spec = spec

    @property
    def name(self) -> str:
        return f"create_index:{self.spec.collection}.{self.spec.index_name}"

    def describe(self) -> str:
        keys = ", ".join(f"{f}:{d}" for f, d in self.spec.key_list)
        unique = " unique" if self.spec.unique else ""
        return f"{self.name} ({keys}){unique}"

    def _find(self, db) -> tuple[str, dict] | None:
        """Existing index with this name, else one with the same key pattern."""
        info = db[self.spec.collection].index_information()
        if self.spec.index_name in info:
            return self.spec.index_name, info[self.spec.index_name]
        for name, opts in info.items():
            if normalize_key(opts.get("key", [])) == self.spec.key_list:
                return name, opts
        return None

    def _matches(self, name: str, opts: dict) -> bool:
        return (
            name == self.spec.index_name
            and normalize_key(opts.get("key", [])) == self.spec.key_list
            and index_options(opts) == self.spec.options
        )

    def create(self, db) -> None:
        db[self.spec.collection].create_index(
            self.spec.key_list, name=self.spec.index_name, **self.spec.options
        )

    def already_exists(self) -> BootstrapError:
        return IndexConflictError(
            f"index {self.spec.index_name} already exists on {self.spec.collection}", step=self.name
        )

    def apply(self, db) -> str:
        found = self._find(db)
        if found is None:
            self.create(db)
            return CREATED
        name, opts = found
        if self.if_exists is IfExists.REPLACE:
            db[self.spec.collection].drop_index(name)
            self.create(db)
            return REPLACED
        if self.if_exists is IfExists.ERROR:
            raise self.already_exists()
        if not self._matches(name, opts):
            raise IndexConflictError(
                f"index {name} on {self.spec.collection} does not match "
                f"{self.spec.index_name} (keys={self.spec.key_list}, options={self.spec.options})",
                step=self.name,
            )
        return SKIPPED


def plan_steps(config: BootstrapConfig) -> list[Step]:
    steps: list[Step] = [CreateUser(config.credential, config.database)]
    steps += [CreateCollection(c) for c in config.collections]
    steps += [CreateIndex(i) for i in config.indexes]
    return steps
