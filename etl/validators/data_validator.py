"""
Rule-set validation of canonical records with a numeric quality score
"""

from typing import Any, Callable, Dict, List, Mapping, Optional
from datetime import date, datetime
from etl.reference import REFERENCE_RULE, ReferenceCache
from schemas.records import ValidationResult
import ast
import importlib
import logging
import math
import operator
import re

logger = logging.getLogger(__name__)

# Score deductions per violation
REQUIRED_FIELD_PENALTY = 0.1
DATA_TYPE_PENALTY = 0.05
CONSTRAINT_PENALTY = 0.1
CONSTRAINT_ERROR_PENALTY = 0.15
REFERENCE_PENALTY = 0.2
REFERENCE_ERROR_PENALTY = 0.15
CUSTOM_RULE_PENALTY = 0.1

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
PHONE_PATTERN = re.compile(r"^\+?[\d\s\-\(\)]+$")
REGEX_CONSTRAINT = re.compile(r"^\s*(\w+)\s*~\s*(.+?)\s*$")
SQL_KEYWORDS = re.compile(r"\b(AND|OR|NOT)\b", re.IGNORECASE)

ALLOWED_FUNCTIONS: Dict[str, Callable[..., Any]] = {
    "abs": abs,
    "min": min,
    "max": max,
    "sqrt": math.sqrt,
    "pow": pow,
    "log": math.log,
}

BINARY_OPERATORS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.Mod: operator.mod,
    ast.Pow: operator.pow,
}

UNARY_OPERATORS = {
    ast.USub: operator.neg,
    ast.UAdd: operator.pos,
    ast.Not: operator.not_,
}

COMPARISON_OPERATORS = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
}


class ConstraintNotApplicable(Exception):
    """A constraint references a field the record does not carry"""


class ExpressionEvaluator:
    """
    Evaluate a constraint expression against a record without eval().
    
    Supports arithmetic, comparisons, and/or/not (SQL spelling accepted),
    numeric and string literals, record field names and the functions
    abs, min, max, sqrt, pow, log (any case).
    """
    
    def __init__(self, record: Mapping[str, Any]):
        self.record = record
    
    def evaluate(self, expression: str) -> Any:
        source = SQL_KEYWORDS.sub(lambda m: m.group(1).lower(), expression)
        tree = ast.parse(source.strip(), mode="eval")
        return self._eval(tree.body)
    
    def _eval(self, node: ast.AST) -> Any:
        if isinstance(node, ast.Constant) and isinstance(node.value, (int, float, str, bool)):
            return node.value
        
        if isinstance(node, ast.Name):
            if node.id not in self.record or self.record[node.id] is None:
                raise ConstraintNotApplicable(node.id)
            return self.record[node.id]
        
        if isinstance(node, ast.BinOp) and type(node.op) in BINARY_OPERATORS:
            return BINARY_OPERATORS[type(node.op)](self._eval(node.left), self._eval(node.right))
        
        if isinstance(node, ast.UnaryOp) and type(node.op) in UNARY_OPERATORS:
            return UNARY_OPERATORS[type(node.op)](self._eval(node.operand))
        
        if isinstance(node, ast.BoolOp):
            values = [self._eval(v) for v in node.values]
            return all(values) if isinstance(node.op, ast.And) else any(values)
        
        if isinstance(node, ast.Compare):
            left = self._eval(node.left)
            for op, comparator in zip(node.ops, node.comparators):
                if type(op) not in COMPARISON_OPERATORS:
                    raise ValueError(f"Unsupported comparison: {type(op).__name__}")
                right = self._eval(comparator)
                if not COMPARISON_OPERATORS[type(op)](left, right):
                    return False
                left = right
            return True
        
        if isinstance(node, ast.Call) and isinstance(node.func, ast.Name) and not node.keywords:
            function = ALLOWED_FUNCTIONS.get(node.func.id.lower())
            if function is None:
                raise ValueError(f"Function not allowed: {node.func.id}")
            return function(*[self._eval(arg) for arg in node.args])
        
        raise ValueError(f"Unsupported expression element: {type(node).__name__}")


def _numeric(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(str(value))
    except ValueError:
        return None


def is_valid_data_type(value: Any, expected_type: str) -> bool:
    """Whether value conforms to a declared field type; unknown types pass"""
    if expected_type == "integer":
        if isinstance(value, bool):
            return False
        return isinstance(value, int) or (isinstance(value, str) and value.isdigit())
    if expected_type == "decimal":
        return _numeric(value) is not None
    if expected_type == "string":
        return isinstance(value, str)
    if expected_type == "boolean":
        return isinstance(value, bool) or str(value).lower() in ("true", "false", "1", "0")
    if expected_type == "date":
        if isinstance(value, (date, datetime)):
            return True
        try:
            datetime.fromisoformat(str(value).replace("Z", "+00:00"))
            return True
        except ValueError:
            return False
    if expected_type == "email":
        return isinstance(value, str) and EMAIL_PATTERN.match(value) is not None
    if expected_type == "phone":
        return isinstance(value, str) and PHONE_PATTERN.match(value) is not None
    return True


def load_rule_class(path: str) -> type:
    """Import "package.module:ClassName" or "package.module.ClassName" """
    module_name, _, class_name = path.replace(":", ".").rpartition(".")
    if not module_name:
        raise ImportError(f"Not an importable class path: {path}")
    return getattr(importlib.import_module(module_name), class_name)


class DataValidator:
    """
    Apply a rule set to one record.
    
    Rule groups, each optional:
        required_fields: [field, ...]
        data_types: {field: integer|decimal|string|boolean|date|email|phone}
        business_constraints: {name: "expression"} or {name: "field ~ regex"}
        referential_integrity: {name: "table.field IN (SELECT col FROM dim_table)"}
        custom_rules: {name: {"class": "pkg.mod.Class", "method": ..., "parameters": {...}}}
    
    The record is valid iff no rule produced an error. The score starts at
    1.0, loses a fixed amount per violation and is clamped to [0, 1].
    Constraints that reference fields absent from the record are skipped.
    """
    
    def __init__(self, reference: Optional[ReferenceCache] = None):
        self.reference = reference or ReferenceCache()
    
    def validate(self, data: Mapping[str, Any], rules: Mapping[str, Any]) -> ValidationResult:
        errors: List[Dict[str, Any]] = []
        penalty = 0.0
        
        if rules.get("required_fields"):
            penalty += self._validate_required_fields(data, rules["required_fields"], errors)
        if rules.get("data_types"):
            penalty += self._validate_data_types(data, rules["data_types"], errors)
        if rules.get("business_constraints"):
            penalty += self._validate_business_constraints(data, rules["business_constraints"], errors)
        if rules.get("referential_integrity"):
            penalty += self._validate_referential_integrity(data, rules["referential_integrity"], errors)
        if rules.get("custom_rules"):
            penalty += self._run_custom_rules(data, rules["custom_rules"], errors)
        
        return ValidationResult(
            valid=not errors,
            score=min(max(1.0 - penalty, 0.0), 1.0),
            errors=errors
        )
    
    def _validate_required_fields(self, data, fields, errors) -> float:
        penalty = 0.0
        for field in fields:
            if data.get(field) is None or data.get(field) == "":
                errors.append({
                    "type": "required_field",
                    "field": field,
                    "message": f"Required field '{field}' is missing or empty"
                })
                penalty += REQUIRED_FIELD_PENALTY
        return penalty
    
    def _validate_data_types(self, data, data_types, errors) -> float:
        penalty = 0.0
        for field, expected_type in data_types.items():
            value = data.get(field)
            if value is None or is_valid_data_type(value, expected_type):
                continue
            errors.append({
                "type": "data_type",
                "field": field,
                "expected_type": expected_type,
                "actual_value": value,
                "message": f"Field '{field}' should be of type {expected_type}"
            })
            penalty += DATA_TYPE_PENALTY
        return penalty
    
    def _validate_business_constraints(self, data, constraints, errors) -> float:
        penalty = 0.0
        evaluator = ExpressionEvaluator(data)
        
        for name, rule in constraints.items():
            try:
                regex_rule = REGEX_CONSTRAINT.match(rule)
                if regex_rule:
                    field, pattern = regex_rule.groups()
                    if data.get(field) is None:
                        raise ConstraintNotApplicable(field)
                    passed = re.search(pattern, str(data[field])) is not None
                else:
                    passed = bool(evaluator.evaluate(rule))
            except ConstraintNotApplicable as e:
                logger.debug(f"Constraint '{name}' skipped: field {e} not present")
                continue
            except Exception as e:
                errors.append({
                    "type": "business_constraint_error",
                    "constraint": name,
                    "error": str(e),
                    "message": f"Error evaluating constraint '{name}': {str(e)}"
                })
                penalty += CONSTRAINT_ERROR_PENALTY
                continue
            
            if not passed:
                errors.append({
                    "type": "business_constraint",
                    "constraint": name,
                    "rule": rule,
                    "message": f"Business constraint '{name}' failed"
                })
                penalty += CONSTRAINT_PENALTY
        return penalty
    
    def _validate_referential_integrity(self, data, rules, errors) -> float:
        penalty = 0.0
        for name, check in rules.items():
            match = REFERENCE_RULE.match(str(check))
            if not match:
                continue
            _, field, target_field, table = match.groups()
            value = data.get(field)
            if value is None:
                continue
            
            if not self.reference.has_table(table):
                errors.append({
                    "type": "referential_integrity_error",
                    "rule": name,
                    "error": f"Reference table {table} not loaded",
                    "message": f"Error checking referential integrity '{name}': {table} not loaded"
                })
                penalty += REFERENCE_ERROR_PENALTY
                continue
            
            if not self.reference.contains(table, target_field, value):
                errors.append({
                    "type": "referential_integrity",
                    "rule": name,
                    "field": field,
                    "value": value,
                    "table": table,
                    "message": (
                        f"Referential integrity check failed: {field} = {value} "
                        f"not found in {table}.{target_field}"
                    )
                })
                penalty += REFERENCE_PENALTY
        return penalty
    
    def _run_custom_rules(self, data, custom_rules, errors) -> float:
        penalty = 0.0
        for name, rule_config in custom_rules.items():
            try:
                rule_class = load_rule_class(rule_config["class"])
                method = getattr(rule_class(), rule_config.get("method", "validate"))
                result = method(dict(data), rule_config.get("parameters", {}))
            except Exception as e:
                errors.append({
                    "type": "custom_rule_error",
                    "rule": name,
                    "error": str(e),
                    "message": f"Error running custom rule '{name}': {str(e)}"
                })
                penalty += CUSTOM_RULE_PENALTY
                continue
            
            if not result.get("valid", False):
                errors.append({
                    "type": "custom_rule",
                    "rule": name,
                    "message": result.get("message") or f"Custom rule '{name}' failed",
                    "details": result.get("details")
                })
                penalty += result.get("score_impact") or CUSTOM_RULE_PENALTY
        return penalty
