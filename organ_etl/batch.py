from collections.abc import Mapping
import logging
from pathlib import Path

from organ_etl.config import Settings
from organ_etl.ingest import read_delimited
from organ_etl.pipeline import EntityBatch, PipelineRunner
from organ_etl.retry import run_with_retries
from organ_etl.schemas import EntityType, PipelineResult


logger = logging.getLogger(__name__)

RUN_ORDER = (EntityType.CENTER, EntityType.DONOR, EntityType.RECIPIENT)


def default_input_paths(settings: Settings) -> dict[EntityType, Path]:
    input_dir = Path(settings.input_dir)
    return {
        EntityType.CENTER: input_dir / settings.centers_file,
        EntityType.DONOR: input_dir / settings.donors_file,
        EntityType.RECIPIENT: input_dir / settings.recipients_file,
    }


def read_batches(paths: Mapping[EntityType, Path]) -> dict[EntityType, EntityBatch]:
    return {
        EntityType(entity_type): EntityBatch(
            records=read_delimited(path, EntityType(entity_type)),
            source_file_name=path.name,
        )
        for entity_type, path in paths.items()
    }


def run_files(
    runner: PipelineRunner,
    paths: Mapping[EntityType, Path],
) -> dict[EntityType, PipelineResult]:
    batches = read_batches(paths)
    results = runner.run_batch(batches)

    settings = runner.settings
    for entity_type in RUN_ORDER:
        result = results.get(entity_type)
        if result is None or result.succeeded or settings.max_run_retries <= 0:
            continue

        batch = batches[entity_type]
        logger.info("re-running failed pipeline", extra={"entity_type": entity_type.value, "run_id": result.run_id})
        # The failed batch run above already used the first attempt.
        results[entity_type] = run_with_retries(
            lambda entity_type=entity_type, batch=batch: runner.run_entity(
                entity_type,
                batch.records,
                source_file_name=batch.source_file_name,
            ),
            max_retries=settings.max_run_retries - 1,
            backoff_seconds=settings.retry_backoff_seconds,
            is_failure=lambda outcome: not outcome.succeeded,
            on_attempt_failure=lambda attempt, outcome: logger.warning(
                "pipeline re-run failed",
                extra={"run_id": outcome.run_id, "attempt": attempt, "error": outcome.error_message},
            ),
        )
    return results
