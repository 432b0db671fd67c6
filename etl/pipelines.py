"""
Default pipeline catalogue and cache invalidation table
"""

from typing import Any, Dict, List
from core.config import Settings, settings as default_settings

# Pipeline name -> cache key patterns dropped after a successful load
CACHE_INVALIDATION_PATTERNS: Dict[str, List[str]] = {
    "shipments_realtime": ["dashboard:*", "operational:*"],
    "financial_transactions": ["financial:*"],
    "performance_metrics": ["performance:*"],
}


def default_pipelines(settings: Settings = default_settings) -> Dict[str, Dict[str, Any]]:
    """
    Pipeline configurations of the standard deployment.
    
    Source connections "operational_db" and "accounting_db" must be
    declared in WAREHOUSE_CONNECTIONS.
    """
    return {
        "shipments_realtime": {
            "name": "Real-time Shipments Processing",
            "schedule": "every_5_minutes",
            "table": "shipments",
            "dimensions": ["dim_client", "dim_branch", "dim_customer"],
            "sources": {
                "internal_shipments": {
                    "type": "database",
                    "table": "shipments",
                    "connection": "operational_db",
                    "incremental_field": "updated_at",
                    "batch_size": 1000,
                    "where_clause": "current_status != 'DELIVERED'",
                },
                "tms_api": {
                    "type": "api",
                    "endpoint": settings.TMS_API_ENDPOINT,
                    "auth": "bearer_token",
                    "token": settings.TMS_API_TOKEN,
                    "incremental_field": "updated_at",
                    "batch_size": 500,
                    "timeout": 30,
                },
            },
            "transformations": {
                "data_cleansing": {
                    "trim_fields": ["tracking_number", "customer_name", "address"],
                    "standardize_status": True,
                    "validate_coordinates": True,
                    "handle_nulls": {"weight_kg": 1.0, "declared_value": 0.0},
                },
                "business_rules": {
                    "calculate_delivery_time": True,
                    "enrich_with_branch_data": True,
                    "calculate_financial_metrics": True,
                    "apply_client_pricing": True,
                },
                "geographical_enrichment": {
                    "calculate_distance": True,
                    "determine_service_area": True,
                },
            },
            "validations": {
                "required_fields": [
                    "tracking_number", "client_id", "origin_branch_id", "dest_branch_id", "customer_id"
                ],
                "data_types": {
                    "declared_value": "decimal",
                    "weight_kg": "decimal",
                    "delivery_attempts": "integer",
                },
                "business_constraints": {
                    "delivery_time_positive": "delivery_duration_minutes > 0",
                    "financial_balance": "ABS(shipping_charge - total_cost) >= 0",
                    "tracking_number_format": "tracking_number ~ ^[A-Z0-9]{6,20}$",
                },
            },
            "destinations": {
                "fact_shipments": {
                    "load_type": "upsert",
                    "merge_key": "shipment_id",
                    "batch_size": 5000,
                },
                "staging": {
                    "load_type": "append",
                    "table": "stg_shipments",
                },
            },
        },
        "financial_transactions": {
            "name": "Financial Transactions Processing",
            "schedule": "every_10_minutes",
            "table": "financial_transactions",
            "sources": {
                "accounting_system": {
                    "type": "database",
                    "table": "financial_transactions",
                    "connection": "accounting_db",
                    "incremental_field": "transaction_date",
                    "batch_size": 2000,
                },
                "payment_gateway": {
                    "type": "api",
                    "endpoint": settings.PAYMENT_API_ENDPOINT,
                    "auth": "api_key",
                    "api_key": settings.PAYMENT_API_KEY,
                    "batch_size": 1000,
                },
            },
            "destinations": {
                "fact_financial_transactions": {
                    "load_type": "append",
                    "batch_size": 3000,
                },
            },
        },
        "performance_metrics": {
            "name": "Daily Performance Metrics Aggregation",
            "schedule": "0 2 * * *",
            "table": "performance_metrics",
            "sources": {
                "fact_shipments": {
                    "type": "fact_table",
                    "query": "SELECT * FROM fact_shipments WHERE pickup_date_key = ?",
                },
            },
            "destinations": {
                "fact_performance_metrics": {
                    "load_type": "upsert",
                    "merge_key": "branch_key,date_key",
                },
            },
        },
    }
