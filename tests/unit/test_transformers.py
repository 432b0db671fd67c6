"""
Unit tests for the canonical mapping and the Transformer stage
"""

import pytest
from etl.reference import ReferenceCache
from etl.staging import Stager
from etl.transformers import DataTransformer, Transformer
from models.base import ProcessingStatus
from schemas.pipeline import PipelineConfig
from core.exceptions import TransformationError


@pytest.fixture
def reference():
    return ReferenceCache({
        "dim_branch": [
            {
                "branch_key": 501, "branch_id": 1, "branch_name": "Kampala Hub", "branch_type": "HUB",
                "latitude": 0.3476, "longitude": 32.5825, "is_active": True,
                "service_capabilities": {"max_delivery_distance_km": 50},
            },
            {
                "branch_key": 502, "branch_id": 2, "branch_name": "Entebbe", "branch_type": "REGIONAL",
                "latitude": 0.0512, "longitude": 32.4637, "is_active": True,
                "service_capabilities": '{"max_delivery_distance_km": 10}',
            },
        ],
        "dim_client": [
            {"client_key": 901, "client_id": 10, "service_level_agreement": "EXPRESS", "is_active": True},
            {"client_key": 902, "client_id": 11, "service_level_agreement": "ECONOMY", "is_active": False},
        ],
        "dim_customer": [
            {"customer_key": 7001, "customer_id": 100, "is_active": True},
        ],
    })


def pipeline(transformations=None):
    return PipelineConfig(table="shipments", transformations=transformations or {})


class TestDataCleansing:
    """Cleansing rules"""

    def test_trim_and_standardize_status(self):
        """Fields are trimmed and statuses mapped"""
        config = pipeline({"data_cleansing": {
            "trim_fields": ["tracking_number"],
            "standardize_status": True,
        }})

        result = DataTransformer().transform({"tracking_number": " TRK1 ", "status": "in transit"}, config)

        assert result["tracking_number"] == "TRK1"
        assert result["status"] == "IN_TRANSIT"

    def test_unknown_status_is_upper_cased(self):
        """Unmapped statuses are upper-cased"""
        assert DataTransformer.standardize_status("on hold") == "ON HOLD"

    def test_invalid_coordinates_are_cleared(self):
        """Out of range coordinates become None"""
        config = pipeline({"data_cleansing": {"validate_coordinates": True}})

        result = DataTransformer().transform(
            {"origin_latitude": 95, "origin_longitude": "32.5", "dest_longitude": "east"},
            config
        )

        assert result["origin_latitude"] is None
        assert result["origin_longitude"] == 32.5
        assert result["dest_longitude"] is None

    def test_null_defaults(self):
        """Nulls take configured defaults"""
        config = pipeline({"data_cleansing": {"handle_nulls": {"weight_kg": 1.0, "declared_value": 0.0}}})

        result = DataTransformer().transform({"weight_kg": None, "declared_value": 12.5}, config)

        assert result["weight_kg"] == 1.0
        assert result["declared_value"] == 12.5


class TestBusinessRules:
    """Business rule enrichment"""

    def test_delivery_time(self):
        """Delivery duration in minutes"""
        config = pipeline({"business_rules": {"calculate_delivery_time": True}})

        result = DataTransformer().transform({
            "picked_up_at": "2024-01-15T08:00:00Z",
            "delivered_at": "2024-01-15T10:30:00Z",
            "expected_delivery_date": "2024-01-15T12:00:00Z",
        }, config)

        assert result["delivery_duration_minutes"] == 150
        assert result["delivery_duration_hours"] == 2.5
        assert result["scheduled_delivery_duration_minutes"] == 240

    def test_branch_enrichment(self, reference):
        """Branch attributes come from dim_branch"""
        config = pipeline({"business_rules": {"enrich_with_branch_data": True}})

        result = DataTransformer(reference).transform({"origin_branch_id": 1, "dest_branch_id": "2"}, config)

        assert result["origin_branch_name"] == "Kampala Hub"
        assert result["dest_branch_type"] == "REGIONAL"
        assert result["dest_latitude"] == 0.0512

    def test_financial_metrics(self):
        """Total cost and margin figures"""
        config = pipeline({"business_rules": {"calculate_financial_metrics": True}})

        result = DataTransformer().transform({
            "shipping_charge": 100, "fuel_surcharge": 10, "insurance_cost": 5, "revenue": 150,
        }, config)

        assert result["total_cost"] == 115
        assert result["margin"] == 35
        assert result["margin_percentage"] == pytest.approx(23.333, rel=1e-3)

    def test_client_pricing_for_express_client(self, reference):
        """EXPRESS clients pay the multiplier"""
        config = pipeline({"business_rules": {"apply_client_pricing": True}})

        result = DataTransformer(reference).transform(
            {"client_id": 10, "service_type": "parcel", "base_shipping_charge": 20}, config
        )

        assert result["shipping_charge"] == 30

    def test_inactive_client_pricing_is_skipped(self, reference):
        """Inactive clients get no pricing"""
        config = pipeline({"business_rules": {"apply_client_pricing": True}})

        result = DataTransformer(reference).transform(
            {"client_id": 11, "service_type": "parcel", "base_shipping_charge": 20}, config
        )

        assert "shipping_charge" not in result


class TestGeographicalEnrichment:
    """Distance and service area"""

    def test_distance_and_service_area(self, reference):
        """Haversine distance within branch range is LOCAL"""
        config = pipeline({
            "business_rules": {"enrich_with_branch_data": True},
            "geographical_enrichment": {"calculate_distance": True, "determine_service_area": True},
        })

        result = DataTransformer(reference).transform({"origin_branch_id": 1, "dest_branch_id": 2}, config)

        assert result["distance_km"] == pytest.approx(35.5, abs=0.3)
        assert result["service_area"] == "LOCAL"

    def test_service_area_beyond_branch_range(self, reference):
        """Beyond the branch range is REGIONAL"""
        config = pipeline({"geographical_enrichment": {"determine_service_area": True}})

        result = DataTransformer(reference).transform({"origin_branch_id": 2, "distance_km": 34.8}, config)

        assert result["service_area"] == "REGIONAL"

    def test_haversine_zero_distance(self):
        """Same point is zero kilometres"""
        assert DataTransformer.haversine_distance(0.3, 32.5, 0.3, 32.5) == 0


class TestMetadata:
    """Date and dimension keys"""

    def test_date_and_dimension_keys(self, reference):
        """Timestamps get YYYYMMDD keys and ids get surrogate keys"""
        result = DataTransformer(reference).transform({
            "created_at": "2024-01-15T08:00:00",
            "delivered_at": "2024-01-17T09:00:00Z",
            "client_id": 11,
            "origin_branch_id": 1,
            "customer_id": 100,
        }, pipeline())

        assert result["created_date_key"] == 20240115
        assert result["delivery_date_key"] == 20240117
        assert result["origin_branch_key"] == 501
        assert result["customer_key"] == 7001
        assert result["client_key"] is None

    def test_dimension_keys_need_loaded_dimension(self):
        """No dimension loaded means no surrogate key"""
        result = DataTransformer().transform({"client_id": 10}, pipeline())

        assert "client_key" not in result

    def test_non_object_payload(self):
        """Non-object payloads raise TransformationError"""
        with pytest.raises(TransformationError):
            DataTransformer().transform([1, 2, 3], pipeline())


class TestTransformerStage:
    """Transform stage over staged envelopes"""

    @pytest.mark.asyncio
    async def test_per_record_isolation(self, staging_store):
        """Bad records fail alone"""
        staged = await Stager(staging_store).stage("b1", {
            "internal": [{"id": 1}, "not an object", {"id": 3}, 42],
        })

        transformed = await Transformer(staging_store).transform(staged, pipeline())

        assert [r.fields["id"] for r in transformed] == [1, 3]
        assert [r.stg_id for r in transformed] == [1, 3]
        assert all(r.batch_id == "b1" for r in transformed)
        assert len(staging_store.by_status(ProcessingStatus.TRANSFORMED)) == 2
        failed = staging_store.by_status(ProcessingStatus.FAILED)
        assert [r["stg_id"] for r in failed] == [2, 4]
        assert "Expected a JSON object" in failed[0]["processing_errors"]

    @pytest.mark.asyncio
    async def test_unexpected_error_is_isolated(self, staging_store):
        """Unexpected errors are wrapped and isolated"""
        class Exploding(DataTransformer):
            def transform(self, raw_record, config):
                if raw_record["id"] == 2:
                    raise KeyError("shipment_id")
                return dict(raw_record)

        staged = await Stager(staging_store).stage("b1", {"internal": [{"id": 1}, {"id": 2}]})

        transformed = await Transformer(staging_store, Exploding()).transform(staged, pipeline())

        assert len(transformed) == 1
        assert "Transformation failed" in staging_store.rows[2]["processing_errors"]

    @pytest.mark.asyncio
    async def test_already_processed_envelopes_are_skipped(self, staging_store):
        """Envelopes no longer PENDING are neither re-transformed nor returned"""
        staged = await Stager(staging_store).stage("b1", {"internal": [{"id": 1}, {"id": 2}]})
        await staging_store.mark_transformed(1)
        staged = await staging_store.fetch_batch("b1")

        transformed = await Transformer(staging_store).transform(staged, pipeline())

        assert [r.stg_id for r in transformed] == [2]
