from __future__ import annotations
from dataclasses import dataclass, field
import logging

from pymongo.errors import PyMongoError

from ..config_loader import BootstrapConfig, Settings
from ..errors import BootstrapError, translate
from ..mongo_client import get_client, ping
from .steps import CREATED, REPLACED, SKIPPED, Stage, Step, plan_steps

logger = logging.getLogger(__name__)

_STAGE_ORDER = (Stage.CREDENTIAL_CREATED, Stage.COLLECTIONS_CREATED, Stage.INDEXES_CREATED)


@dataclass
class BootstrapResult:
    database: str
    stage: Stage = Stage.START
    outcomes: list[tuple[str, str]] = field(default_factory=list)

    def count(self, outcome: str) -> int:
        return sum(1 for _, o in self.outcomes if o == outcome)

    def as_dict(self) -> dict:
        return {
            "database": self.database,
            "reached": self.stage.value,
            "n_created": self.count(CREATED),
            "n_skipped": self.count(SKIPPED),
            "n_replaced": self.count(REPLACED),
        }


def _run_step(step: Step, db, result: BootstrapResult) -> None:
    try:
        outcome = step.apply(db)
    except BootstrapError as exc:
        exc.step = exc.step or step.name
        exc.stage = result.stage
        raise
    except PyMongoError as exc:
        err = translate(exc, step.name)
        if err is None:
            raise
        err.stage = result.stage
        raise err from exc
    result.outcomes.append((step.name, outcome))
    logger.debug(
        f"{step.name} {outcome}",
        extra={"stage": "bootstrap.mongo", "step": step.name, "outcome": outcome},
    )


def initialize(client, config: BootstrapConfig) -> BootstrapResult:
    """Run every bootstrap step against ``config.database``, in order.

    Fail-fast: the first error stops the run and carries the last completed
    stage. Steps that already ran are not rolled back.
    """
    result = BootstrapResult(database=config.database)
    db = client[config.database]
    result.stage = Stage.DATABASE_SELECTED

    steps = plan_steps(config)
    for stage in _STAGE_ORDER:
        for step in (s for s in steps if s.stage is stage):
            _run_step(step, db, result)
        result.stage = stage

    result.stage = Stage.DONE
    return result


def bootstrap_mongo(settings: Settings, client=None) -> dict:
    own_client = client is None
    if own_client:
        client = get_client(settings)
    try:
        ping(client)
        result = initialize(client, settings.bootstrap)
    finally:
        if own_client:
            client.close()
    return {"ok": True, **result.as_dict()}
