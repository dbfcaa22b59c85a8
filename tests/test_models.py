"""Tests for entity models and their wire/store encodings."""

from datetime import UTC, date, datetime

import pytest

from lubelogger_sync.models import (
    ENTITY_TYPES,
    ExtraField,
    GasRecord,
    OdometerRecord,
    Reminder,
    ReminderFrequency,
    ReminderType,
    ServiceRecord,
    SyncStatus,
    Vehicle,
    entity_class,
    looks_server_assigned,
    next_local_id,
    parse_date,
    parse_datetime,
)


class TestApiDecoding:
    """from_api reads camelCase JSON from the server."""

    def test_vehicle(self):
        vehicle = Vehicle.from_api(
            {
                "id": 3,
                "year": "2018",
                "make": "Honda",
                "model": "Fit",
                "licensePlate": "ABC123",
                "currentMileage": 90210,
                "unknownField": "ignored",
            }
        )

        assert vehicle.id == 3
        assert vehicle.year == 2018
        assert vehicle.license_plate == "ABC123"
        assert vehicle.current_mileage == 90210
        assert vehicle.sync_status == SyncStatus.SYNCED
        assert vehicle.is_dirty is False

    def test_keys_are_case_insensitive(self):
        vehicle = Vehicle.from_api({"ID": 1, "LicensePlate": "XYZ"})
        assert vehicle.id == 1
        assert vehicle.license_plate == "XYZ"

    def test_gas_record_coerces_strings(self):
        record = GasRecord.from_api(
            {
                "id": 10,
                "vehicleId": 3,
                "date": "1/31/2024",
                "odometer": "45000",
                "fuelConsumed": "10.5",
                "isFullFill": "False",
                "missedFuelUp": "true",
                "cost": "$42.10",
            }
        )

        assert record.date == date(2024, 1, 31)
        assert record.odometer == 45000
        assert record.fuel_consumed == 10.5
        assert record.is_full_fill is False
        assert record.missed_fuel_up is True
        assert record.cost == pytest.approx(42.10)

    def test_odometer_extra_fields(self):
        record = OdometerRecord.from_api(
            {"id": 1, "extraFields": [{"name": "Trip", "value": "Work"}]}
        )
        assert record.extra_fields == [ExtraField("Trip", "Work")]

    def test_reminder_enums(self):
        reminder = Reminder.from_api(
            {"id": 2, "type": "Odometer", "frequency": "Months", "dueOdometer": ""}
        )
        assert reminder.type == ReminderType.ODOMETER
        assert reminder.frequency == ReminderFrequency.MONTHS
        assert reminder.due_odometer is None


class TestForms:
    """to_form encodes data fields for add/update requests."""

    def test_create_form_omits_id_and_none(self):
        record = ServiceRecord(
            id=-2, vehicle_id=3, date=date(2024, 2, 1), description="Oil", cost=49.5
        )

        form = dict(record.to_form())

        assert "id" not in form
        assert "odometer" not in form
        assert form["vehicleId"] == "3"
        assert form["date"] == "2024-02-01"
        assert form["cost"] == "49.5"

    def test_update_form_includes_id(self):
        pairs = Vehicle(id=7, name="Car").to_form(include_id=True)
        assert pairs[0] == ("id", "7")

    def test_booleans_are_lowercase(self):
        form = dict(GasRecord(id=1, is_full_fill=True, missed_fuel_up=False).to_form())
        assert form["isFullFill"] == "true"
        assert form["missedFuelUp"] == "false"

    def test_sync_fields_never_sent(self):
        form = dict(
            Vehicle(id=1, sync_status=SyncStatus.PENDING_UPDATE, is_dirty=True).to_form()
        )
        assert "syncStatus" not in form
        assert "isDirty" not in form


class TestStoreEncoding:
    def test_dict_round_trip_preserves_sync_fields(self):
        synced_at = datetime(2024, 5, 5, 10, 30, tzinfo=UTC)
        reminder = Reminder(
            id=4,
            title="Inspection",
            due_date=date(2024, 9, 1),
            frequency=ReminderFrequency.YEARS,
            sync_status=SyncStatus.PENDING_UPDATE,
            is_dirty=True,
            last_sync_timestamp=synced_at,
        )

        restored = Reminder.from_dict(reminder.to_dict())

        assert restored == reminder

    def test_data_fields_exclude_sync_metadata(self):
        assert "sync_status" not in Vehicle.data_fields()
        assert "id" not in Vehicle.data_fields()
        assert "name" in Vehicle.data_fields()


class TestHelpers:
    def test_entity_class_lookup(self):
        assert entity_class("GasRecord") is GasRecord
        assert len(ENTITY_TYPES) == 10
        with pytest.raises(KeyError):
            entity_class("Boat")

    def test_next_local_id(self):
        assert next_local_id([]) == -1
        assert next_local_id([Vehicle(id=5), Vehicle(id=-3), Vehicle(id=-1)]) == -4

    def test_looks_server_assigned(self):
        assert looks_server_assigned(12) is True
        assert looks_server_assigned(0) is False
        assert looks_server_assigned(-5) is False

    def test_parse_datetime_is_timezone_aware(self):
        assert parse_datetime("2024-01-01T00:00:00Z").tzinfo is not None
        assert parse_datetime("2024-01-01T00:00:00").tzinfo is not None
        assert parse_datetime("") is None

    def test_parse_date_forms(self):
        assert parse_date("2024-03-04") == date(2024, 3, 4)
        assert parse_date("2024-03-04T10:00:00") == date(2024, 3, 4)
        assert parse_date("3/4/2024") == date(2024, 3, 4)
