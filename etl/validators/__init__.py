from etl.validators.data_validator import DataValidator, ExpressionEvaluator
from etl.validators.validator import Validator

__all__ = ["DataValidator", "ExpressionEvaluator", "Validator"]
