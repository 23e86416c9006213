"""Unit tests for fleet VM naming rules."""

import sys
from datetime import datetime
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from infra.exceptions import ValidationError
from infra.naming import (
    MAX_FLEET_SIZE,
    deployment_name,
    generate_vm_name,
    is_valid_vm_name,
    parse_bulk_range,
    validate_vm_name,
    vm_resource_name,
)

CONFIG = {"RESOURCE_PREFIX": "dats-beeux-dev"}


class TestVmNames:
    def test_generate_pads_to_two_digits(self):
        assert generate_vm_name(3) == "ubuntu-dev-03"
        assert generate_vm_name(40) == "ubuntu-dev-40"

    @pytest.mark.parametrize("name", ["ubuntu-dev-01", "ubuntu-dev-17", "ubuntu-dev-40"])
    def test_valid_names(self, name):
        assert is_valid_vm_name(name)
        validate_vm_name(name)

    @pytest.mark.parametrize(
        "name",
        ["", "ubuntu-dev-1", "ubuntu-dev-001", "Ubuntu-dev-01", "ubuntu-dev-ab", "ubuntu-prod-01", "ubuntu-dev-01 "],
    )
    def test_invalid_format(self, name):
        assert not is_valid_vm_name(name)
        with pytest.raises(ValidationError, match="Invalid VM name format"):
            validate_vm_name(name)

    @pytest.mark.parametrize("name", ["ubuntu-dev-00", "ubuntu-dev-41", "ubuntu-dev-99"])
    def test_out_of_range(self, name):
        assert not is_valid_vm_name(name)
        with pytest.raises(ValidationError, match="out of range"):
            validate_vm_name(name)


class TestBulkRange:
    def test_valid_range(self):
        assert parse_bulk_range("2", "5") == (2, 5)

    def test_single_vm_range(self):
        assert parse_bulk_range("7", "7") == (7, 7)

    def test_end_above_maximum(self):
        with pytest.raises(ValidationError, match=f"Maximum supported VMs is {MAX_FLEET_SIZE}"):
            parse_bulk_range("1", "41")

    def test_reversed_range(self):
        with pytest.raises(ValidationError, match="less than or equal"):
            parse_bulk_range("5", "2")

    @pytest.mark.parametrize("start,end", [("a", "3"), ("1", "x"), ("-1", "3"), ("1.5", "3")])
    def test_non_numeric(self, start, end):
        with pytest.raises(ValidationError, match="must be numbers"):
            parse_bulk_range(start, end)

    def test_zero_start(self):
        with pytest.raises(ValidationError, match="at least 1"):
            parse_bulk_range("0", "3")


class TestResourceNames:
    def test_fleet_name_is_prefixed(self):
        assert vm_resource_name("ubuntu-dev-02", CONFIG) == "dats-beeux-dev-ubuntu-dev-02"

    def test_role_vm_name_unchanged(self):
        assert vm_resource_name("dats-beeux-data-dev", CONFIG) == "dats-beeux-data-dev"

    def test_deployment_name_has_timestamp(self):
        now = datetime(2026, 3, 4, 5, 6, 7)
        assert deployment_name("ubuntu-dev-01", now) == "ubuntu-dev-01-20260304-050607"
