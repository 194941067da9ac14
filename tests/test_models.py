"""
Tests for data models.
"""

import pytest

from vmdeck.models import Datastore, GuestAddress, PowerFilter, VMFilter, VMState


class TestFilters:
    """Power state and name filters."""

    @pytest.mark.parametrize("power,state,expected", [
        (PowerFilter.ALL, VMState.CRASHED, True),
        (PowerFilter.RUNNING, VMState.RUNNING, True),
        (PowerFilter.RUNNING, VMState.PAUSED, False),
        (PowerFilter.STOPPED, VMState.SHUTOFF, True),
        (PowerFilter.STOPPED, VMState.RUNNING, False),
        (PowerFilter.PAUSED, VMState.PMSUSPENDED, True),
    ])
    def test_power(self, power, state, expected):
        assert power.matches(state) is expected

    def test_name_pattern_case_insensitive(self, make_vm):
        vm_filter = VMFilter(name_pattern="WEB*")
        assert vm_filter.matches(make_vm(name="web01"))
        assert not vm_filter.matches(make_vm(name="db01"))

    def test_combined(self, make_vm):
        vm_filter = VMFilter(power=PowerFilter.STOPPED, name_pattern="web*")
        assert not vm_filter.matches(make_vm(name="web01", state=VMState.RUNNING))


class TestVM:
    """Display helpers."""

    def test_memory_display(self, make_vm):
        assert make_vm(memory_mb=512).memory_display == "512M"
        assert make_vm(memory_mb=6144).memory_display == "6.0G"

    def test_primary_ipv4(self, make_vm):
        vm = make_vm(addresses=[
            GuestAddress("lo", "", "127.0.0.1", 8),
            GuestAddress("eth0", "", "fe80::1", 64),
            GuestAddress("eth0", "", "10.0.0.5", 24),
        ])
        assert vm.primary_ipv4 == "10.0.0.5"

    def test_state_helpers(self, make_vm):
        assert make_vm(state=VMState.CRASHED).can_start
        assert make_vm(state=VMState.PAUSED).can_stop
        assert make_vm(state=VMState.PMSUSPENDED).is_paused
        assert VMState.SHUTOFF.display_name == "shut off"


def test_datastore_percent_used():
    assert Datastore("u", "empty", "qemu:///system", True).percent_used == 0.0
    assert Datastore("u", "half", "qemu:///system", True, 200, 100, 100).percent_used == 50.0
