from collections.abc import Callable, Iterable, Mapping
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
import logging
import socket
from typing import TypeVar

from sqlalchemy.orm import Session, sessionmaker

from organ_etl.config import Settings
from organ_etl.db_models import LoadRun, utc_now
from organ_etl.errors import ReconciliationError
from organ_etl.loader import load_valid
from organ_etl.run_store import complete_run, create_step, finish_step_failure, finish_step_success, start_run
from organ_etl.schemas import EntityType, LoadResult, PipelineResult, RawRecord, RunMetrics
from organ_etl.staging import stage
from organ_etl.validation import validate


logger = logging.getLogger(__name__)
T = TypeVar("T")

# Donors and recipients resolve facility keys against loaded centers.
DEPENDENT_ENTITIES = (EntityType.DONOR, EntityType.RECIPIENT)


@dataclass(frozen=True)
class EntityBatch:
    records: list[RawRecord]
    source_file_name: str | None = None


def error_rate(error_rows: int, source_rows: int) -> float:
    if source_rows <= 0:
        return 0.0
    return error_rows * 100.0 / source_rows


class PipelineRunner:
    def __init__(
        self,
        settings: Settings,
        session_factory: sessionmaker[Session],
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.settings = settings
        self.session_factory = session_factory
        self.clock = clock

    def run_entity(
        self,
        entity_type: EntityType,
        records: Iterable[RawRecord],
        *,
        source_file_name: str | None = None,
        package_name: str | None = None,
    ) -> PipelineResult:
        entity_type = EntityType(entity_type)
        records = list(records)
        package_name = package_name or f"{self.settings.app_name}.{entity_type.value}"

        with self.session_factory() as db:
            run = start_run(
                db,
                package_name=package_name,
                source_file_name=source_file_name,
                entity_type=entity_type.value,
                executed_by=self.settings.executed_by,
                host_name=socket.gethostname(),
                started_at=self.clock(),
            )
            as_of = run.started_at.date()

            staged = 0
            errors = 0
            loaded = LoadResult()
            try:
                staged = self._run_step(db, run, "stage", lambda: stage(db, entity_type, records, run.id))
                errors = self._run_step(db, run, "validate", lambda: validate(db, entity_type, run.id, as_of=as_of))
                loaded = self._run_step(
                    db,
                    run,
                    "load",
                    lambda: load_valid(db, entity_type, run.id, as_of=as_of, now=self.clock()),
                )
                if staged != errors + loaded.total:
                    raise ReconciliationError(
                        f"staged={staged} does not reconcile with errors={errors} "
                        f"+ inserted={loaded.inserted} + updated={loaded.updated}"
                    )
            except Exception as exc:
                db.rollback()
                complete_run(
                    db,
                    run.id,
                    status="Failed",
                    metrics=self._metrics(len(records), staged, errors, loaded),
                    error_message=str(exc),
                    completed_at=self.clock(),
                )
                logger.exception(
                    "pipeline run failed",
                    extra={"run_id": run.id, "entity_type": entity_type.value},
                )
                return self._result_from_run(run, entity_type)
            except BaseException as exc:
                # Caller abort: seal the ledger, then let the interrupt through.
                db.rollback()
                complete_run(
                    db,
                    run.id,
                    status="Failed",
                    metrics=self._metrics(len(records), staged, errors, loaded),
                    error_message=f"run aborted: {exc!r}",
                    completed_at=self.clock(),
                )
                logger.warning(
                    "pipeline run aborted",
                    extra={"run_id": run.id, "entity_type": entity_type.value},
                )
                raise

            rate = error_rate(errors, len(records))
            status = "Warning" if rate > self.settings.warning_error_rate else "Success"
            complete_run(
                db,
                run.id,
                status=status,
                metrics=self._metrics(len(records), staged, errors, loaded),
                completed_at=self.clock(),
            )
            if status == "Warning":
                logger.warning(
                    "error rate above threshold",
                    extra={"run_id": run.id, "entity_type": entity_type.value, "error_rate": rate},
                )
            return self._result_from_run(run, entity_type)

    def run_batch(self, batches: Mapping[EntityType, EntityBatch]) -> dict[EntityType, PipelineResult]:
        results: dict[EntityType, PipelineResult] = {}
        batches = {EntityType(entity_type): batch for entity_type, batch in batches.items()}

        # Centers must be fully loaded before dependents resolve facility keys.
        centers = batches.get(EntityType.CENTER)
        if centers is not None:
            results[EntityType.CENTER] = self.run_entity(
                EntityType.CENTER,
                centers.records,
                source_file_name=centers.source_file_name,
            )
            if not results[EntityType.CENTER].succeeded:
                logger.warning("center load failed; dependents use the existing facility dimension")

        dependents = [entity_type for entity_type in DEPENDENT_ENTITIES if entity_type in batches]
        if not dependents:
            return results

        with ThreadPoolExecutor(max_workers=max(1, self.settings.max_workers)) as executor:
            futures = {
                entity_type: executor.submit(
                    self.run_entity,
                    entity_type,
                    batches[entity_type].records,
                    source_file_name=batches[entity_type].source_file_name,
                )
                for entity_type in dependents
            }
            for entity_type, future in futures.items():
                results[entity_type] = future.result()
        return results

    def _run_step(self, db: Session, run: LoadRun, step_name: str, fn: Callable[[], T]) -> T:
        # Persist each step so a failed run shows where it stopped.
        step = create_step(db, run_id=run.id, step_name=step_name)
        try:
            result = fn()
        except BaseException as exc:
            db.rollback()
            finish_step_failure(db, step, str(exc) or repr(exc))
            raise
        finish_step_success(db, step)
        return result

    def _metrics(self, source: int, staged: int, errors: int, loaded: LoadResult) -> RunMetrics:
        return RunMetrics(
            source_row_count=source,
            staged_row_count=staged,
            inserted_row_count=loaded.inserted,
            updated_row_count=loaded.updated,
            error_row_count=errors,
        )

    def _result_from_run(self, run: LoadRun, entity_type: EntityType) -> PipelineResult:
        return PipelineResult(
            run_id=run.id,
            entity_type=entity_type,
            package_name=run.package_name,
            source_file_name=run.source_file_name,
            status=run.status,
            source_row_count=run.source_row_count or 0,
            staged_row_count=run.staged_row_count or 0,
            inserted_row_count=run.inserted_row_count or 0,
            updated_row_count=run.updated_row_count or 0,
            error_row_count=run.error_row_count or 0,
            error_message=run.error_message,
            started_at=run.started_at,
            completed_at=run.completed_at,
            steps=[step.step_name for step in run.steps],
        )
