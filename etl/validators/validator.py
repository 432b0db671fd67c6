"""
Validator stage: keep records that pass the pipeline's rule set
"""

from typing import List, Mapping, Any, Optional, Sequence
from pydantic_core import to_json
from etl.staging import StagingRepository
from etl.validators.data_validator import DataValidator
from schemas.records import TransformedRecord
from core.exceptions import RecordValidationError
import logging

logger = logging.getLogger(__name__)


class Validator:
    """
    Apply DataValidator to each transformed record.
    
    Passing records get their score attached (in the record and on the
    staged row). Failing records, and records whose validation raised,
    are marked FAILED in staging and dropped.
    """
    
    def __init__(self, store: StagingRepository, data_validator: Optional[DataValidator] = None):
        self.store = store
        self.data_validator = data_validator or DataValidator()
    
    async def validate(
        self,
        records: Sequence[TransformedRecord],
        rules: Mapping[str, Any]
    ) -> List[TransformedRecord]:
        validated: List[TransformedRecord] = []
        validation_errors = 0
        
        for record in records:
            try:
                result = self.data_validator.validate(record.fields, rules)
                if not result.valid:
                    raise RecordValidationError(
                        f"Record failed {result.error_count} validation rules",
                        context={
                            "stg_id": record.stg_id,
                            "batch_id": record.batch_id,
                            "errors": result.errors
                        }
                    )
            except Exception as e:
                validation_errors += 1
                errors = e.context["errors"] if isinstance(e, RecordValidationError) else [
                    {"type": "validation_exception", "message": str(e)}
                ]
                logger.error(
                    f"Record validation failed: stg_id={record.stg_id}",
                    extra={"error_context": {
                        "stg_id": record.stg_id,
                        "batch_id": record.batch_id,
                        "errors": errors
                    }}
                )
                await self.store.mark_failed(record.stg_id, to_json(errors, fallback=str).decode())
                continue
            
            await self.store.record_quality_score(record.stg_id, result.score)
            validated.append(record.model_copy(update={"validation_score": result.score}))
        
        if validation_errors > 0:
            logger.warning(
                f"Validation completed with {validation_errors} errors: "
                f"{len(validated)} of {len(records)} records passed"
            )
        else:
            logger.info(f"Validation completed: {len(validated)} records passed")
        
        return validated
