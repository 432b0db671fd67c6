"""
Map raw source records into the canonical shipment warehouse schema
"""

from typing import Dict, Any, Optional, Mapping
from datetime import datetime
from etl.reference import ReferenceCache
from schemas.pipeline import PipelineConfig
from core.exceptions import TransformationError
import json
import math
import logging

logger = logging.getLogger(__name__)

STATUS_MAPPING = {
    "created": "CREATED",
    "confirmed": "CONFIRMED",
    "assigned": "ASSIGNED",
    "picked_up": "PICKED_UP",
    "in_transit": "IN_TRANSIT",
    "out_for_delivery": "OUT_FOR_DELIVERY",
    "delivered": "DELIVERED",
    "cancelled": "CANCELLED",
    "returned": "RETURNED",
    "exception": "EXCEPTION",
}

SERVICE_LEVEL_MULTIPLIERS = {
    "EXPRESS": 1.5,
    "STANDARD": 1.0,
    "ECONOMY": 0.8,
}

LATITUDE_FIELDS = ("latitude", "origin_latitude", "dest_latitude")
LONGITUDE_FIELDS = ("longitude", "origin_longitude", "dest_longitude")

DATE_KEY_FIELDS = {
    "created_at": "created_date_key",
    "delivered_at": "delivery_date_key",
    "expected_delivery_date": "scheduled_delivery_date_key",
    "picked_up_at": "pickup_date_key",
}

EARTH_RADIUS_KM = 6371


class DataTransformer:
    """
    Apply a pipeline's transformation blocks to one raw record.
    
    Handles:
    - data_cleansing: trimming, status vocabulary, coordinates, null defaults
    - business_rules: delivery times, branch enrichment, financial
      metrics, client pricing
    - geographical_enrichment: distance and service area
    - metadata: date keys and dimension surrogate keys
    
    Dimension lookups go through a ReferenceCache; without one, the
    enrichment steps that need dimension rows are skipped.
    """
    
    def __init__(self, reference: Optional[ReferenceCache] = None):
        self.reference = reference or ReferenceCache()
    
    def transform(self, raw_record: Any, config: PipelineConfig) -> Dict[str, Any]:
        """
        Transform a decoded payload into a canonical record.
        
        Raises:
            TransformationError: Payload is not a JSON object
        """
        if not isinstance(raw_record, Mapping):
            raise TransformationError(
                f"Expected a JSON object, got {type(raw_record).__name__}",
                context={"pipeline_table": config.table}
            )
        
        data = dict(raw_record)
        transformations = config.transformations
        
        if transformations.get("data_cleansing"):
            data = self._apply_data_cleansing(data, transformations["data_cleansing"])
        
        if transformations.get("business_rules"):
            data = self._apply_business_rules(data, transformations["business_rules"])
        
        if transformations.get("geographical_enrichment"):
            data = self._apply_geographical_enrichment(data, transformations["geographical_enrichment"])
        
        return self._add_metadata(data)
    
    # ------------------------------------------------------------------
    # Transformation blocks
    # ------------------------------------------------------------------
    
    def _apply_data_cleansing(self, data: Dict[str, Any], config: Mapping[str, Any]) -> Dict[str, Any]:
        for field in config.get("trim_fields", []):
            if isinstance(data.get(field), str):
                data[field] = data[field].strip()
        
        if config.get("standardize_status") and data.get("status") is not None:
            data["status"] = self.standardize_status(str(data["status"]))
        
        if config.get("validate_coordinates"):
            data = self._clean_coordinates(data)
        
        for field, default in (config.get("handle_nulls") or {}).items():
            if data.get(field) is None:
                data[field] = default
        
        return data
    
    def _apply_business_rules(self, data: Dict[str, Any], config: Mapping[str, Any]) -> Dict[str, Any]:
        if "calculate_delivery_time" in config:
            data = self._calculate_delivery_time(data)
        if "enrich_with_branch_data" in config:
            data = self._enrich_with_branch_data(data)
        if "calculate_financial_metrics" in config:
            data = self._calculate_financial_metrics(data)
        if "apply_client_pricing" in config:
            data = self._apply_client_pricing(data)
        return data
    
    def _apply_geographical_enrichment(self, data: Dict[str, Any], config: Mapping[str, Any]) -> Dict[str, Any]:
        if "calculate_distance" in config:
            data = self._calculate_distance(data)
        if "determine_service_area" in config:
            data = self._determine_service_area(data)
        return data
    
    # ------------------------------------------------------------------
    # Cleansing
    # ------------------------------------------------------------------
    
    @staticmethod
    def standardize_status(status: str) -> str:
        normalized = status.strip().lower().replace(" ", "_")
        return STATUS_MAPPING.get(normalized, status.strip().upper())
    
    def _clean_coordinates(self, data: Dict[str, Any]) -> Dict[str, Any]:
        for fields, limit in ((LATITUDE_FIELDS, 90), (LONGITUDE_FIELDS, 180)):
            for field in fields:
                if data.get(field) is None:
                    continue
                value = self._parse_float(data[field])
                data[field] = value if value is not None and -limit <= value <= limit else None
        return data
    
    # ------------------------------------------------------------------
    # Business rules
    # ------------------------------------------------------------------
    
    def _calculate_delivery_time(self, data: Dict[str, Any]) -> Dict[str, Any]:
        picked_up = self._parse_datetime(data.get("picked_up_at"))
        delivered = self._parse_datetime(data.get("delivered_at"))
        expected = self._parse_datetime(data.get("expected_delivery_date"))
        
        if picked_up and delivered and delivered > picked_up:
            seconds = (delivered - picked_up).total_seconds()
            data["delivery_duration_minutes"] = seconds / 60
            data["delivery_duration_hours"] = seconds / 3600
        
        if picked_up and expected and expected > picked_up:
            data["scheduled_delivery_duration_minutes"] = (expected - picked_up).total_seconds() / 60
        
        return data
    
    def _enrich_with_branch_data(self, data: Dict[str, Any]) -> Dict[str, Any]:
        for prefix in ("origin", "dest"):
            branch = self.reference.find("dim_branch", "branch_id", data.get(f"{prefix}_branch_id"))
            if branch:
                data[f"{prefix}_branch_name"] = branch.get("branch_name")
                data[f"{prefix}_branch_type"] = branch.get("branch_type")
                data[f"{prefix}_latitude"] = branch.get("latitude")
                data[f"{prefix}_longitude"] = branch.get("longitude")
        return data
    
    def _calculate_financial_metrics(self, data: Dict[str, Any]) -> Dict[str, Any]:
        if data.get("total_cost") is None and data.get("shipping_charge") is not None:
            total = self._parse_float(data["shipping_charge"]) or 0.0
            total += self._parse_float(data.get("fuel_surcharge")) or 0.0
            total += self._parse_float(data.get("insurance_cost")) or 0.0
            data["total_cost"] = total
        
        revenue = self._parse_float(data.get("revenue"))
        total_cost = self._parse_float(data.get("total_cost"))
        if revenue is not None and total_cost is not None:
            data["margin"] = revenue - total_cost
            if revenue > 0:
                data["margin_percentage"] = data["margin"] / revenue * 100
        
        return data
    
    def _apply_client_pricing(self, data: Dict[str, Any]) -> Dict[str, Any]:
        client = self.reference.find("dim_client", "client_id", data.get("client_id"))
        if not client or not client.get("is_active", True):
            return data
        
        sla = client.get("service_level_agreement")
        base_charge = self._parse_float(data.get("base_shipping_charge"))
        if data.get("service_type") and sla and base_charge is not None:
            multiplier = SERVICE_LEVEL_MULTIPLIERS.get(str(sla).upper(), 1.0)
            if multiplier > 1:
                data["shipping_charge"] = base_charge * multiplier
        
        return data
    
    # ------------------------------------------------------------------
    # Geography
    # ------------------------------------------------------------------
    
    def _calculate_distance(self, data: Dict[str, Any]) -> Dict[str, Any]:
        coords = [
            self._parse_float(data.get(f))
            for f in ("origin_latitude", "origin_longitude", "dest_latitude", "dest_longitude")
        ]
        if all(c is not None for c in coords):
            data["distance_km"] = round(self.haversine_distance(*coords), 2)
        return data
    
    def _determine_service_area(self, data: Dict[str, Any]) -> Dict[str, Any]:
        if data.get("distance_km") is None:
            return data
        
        branch = self.reference.find("dim_branch", "branch_id", data.get("origin_branch_id"))
        if not branch or not branch.get("service_capabilities"):
            return data
        
        capabilities = branch["service_capabilities"]
        if isinstance(capabilities, str):
            capabilities = json.loads(capabilities)
        max_distance = capabilities.get("max_delivery_distance_km", 100)
        data["service_area"] = "LOCAL" if data["distance_km"] <= max_distance else "REGIONAL"
        return data
    
    @staticmethod
    def haversine_distance(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
        """Great-circle distance in kilometres"""
        d_lat = math.radians(lat2 - lat1)
        d_lng = math.radians(lng2 - lng1)
        a = (
            math.sin(d_lat / 2) ** 2
            + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lng / 2) ** 2
        )
        return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    
    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------
    
    def _add_metadata(self, data: Dict[str, Any]) -> Dict[str, Any]:
        for source_field, key_field in DATE_KEY_FIELDS.items():
            parsed = self._parse_datetime(data.get(source_field))
            if parsed:
                data[key_field] = int(parsed.strftime("%Y%m%d"))
        
        dimension_keys = (
            ("client_id", "dim_client", "client_id", "client_key", "client_key"),
            ("origin_branch_id", "dim_branch", "branch_id", "branch_key", "origin_branch_key"),
            ("dest_branch_id", "dim_branch", "branch_id", "branch_key", "dest_branch_key"),
            ("customer_id", "dim_customer", "customer_id", "customer_key", "customer_key"),
        )
        for field, table, natural_key, surrogate, target in dimension_keys:
            if data.get(field) is None or not self.reference.has_table(table):
                continue
            row = self.reference.find(table, natural_key, data[field])
            data[target] = row.get(surrogate) if row and row.get("is_active", True) else None
        
        return data
    
    # ------------------------------------------------------------------
    # Parsing helpers
    # ------------------------------------------------------------------
    
    @staticmethod
    def _parse_float(value: Any) -> Optional[float]:
        """Safely parse float value"""
        if value is None or value == "":
            return None
        try:
            return float(value)
        except (ValueError, TypeError):
            return None
    
    @staticmethod
    def _parse_datetime(value: Any) -> Optional[datetime]:
        """Safely parse datetime value"""
        if value is None or value == "":
            return None
        if isinstance(value, datetime):
            return value
        try:
            return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
