"""
Tests for the terminal app: action results and server errors outside the dispatcher.
"""

from unittest.mock import MagicMock, patch

import pytest

from vmdeck.actions import Action
from vmdeck.exceptions import NotConnectedError, OperationError
from vmdeck.models import GuestAddress, VMState
from vmdeck.ui.app import App
from vmdeck.ui.screens.main import MainScreen

from conftest import URI, VM_UUID


@pytest.fixture
def app(session):
    with patch("vmdeck.ui.app.Terminal", MagicMock()):
        ui = App(session)
    theme = MagicMock()
    theme.level.side_effect = lambda text, level: f"{level}: {text}"
    ui.main_screen = MainScreen(ui.term, theme, session)
    ui.main_screen.refresh_vms()
    return ui


class TestRefresh:
    """The refresh key and server disconnects."""

    def test_refresh(self, app):
        app._handle_action("refresh")
        assert app.main_screen.status_message == "success: Refreshed"

    def test_datastore_disconnect_reconnects(self, app, fake_service):
        fake_service.list_datastores.side_effect = NotConnectedError(URI)

        app._handle_action("refresh")

        fake_service.reconnect.assert_called_once_with()
        assert app.main_screen.status_message == f"warning: Reconnected to {URI}; press r to retry"

    def test_reconnect_fails(self, app, fake_service):
        fake_service.list_vms.side_effect = NotConnectedError(URI)
        fake_service.reconnect.side_effect = NotConnectedError(URI)

        app._handle_action("refresh")

        assert app.main_screen.status_message == f"error: Lost connection to {URI}"
        fake_service.list_datastores.assert_called_once_with()

    def test_clone_choices_survive_disconnect(self, app, fake_service, make_vm):
        app.session.datastores = {}
        fake_service.list_datastores.side_effect = NotConnectedError(URI)
        with patch("vmdeck.ui.app.InputDialog") as input_dialog, \
                patch("vmdeck.ui.app.SelectDialog") as select_dialog:
            input_dialog.return_value.show.return_value = "web01-copy"
            select_dialog.return_value.show.side_effect = ["true", ""]
            params = app._clone_params(make_vm())

        assert params == {"name": "web01-copy", "linked": "true", "datastore": ""}
        assert "Reconnected" in app.main_screen.status_message


class TestInventoryDialogs:
    """Hosts and datastores views."""

    def test_hosts_error_goes_to_status(self, app, fake_service):
        fake_service.host_info.side_effect = OperationError("Host info", "permission denied")
        with patch("vmdeck.ui.app.MessageDialog") as dialog:
            app._handle_action("hosts")
        dialog.assert_not_called()
        assert "permission denied" in app.main_screen.status_message

    def test_datastores_disconnect(self, app, fake_service):
        fake_service.list_datastores.side_effect = NotConnectedError(URI)
        with patch("vmdeck.ui.app.MessageDialog") as dialog:
            app._handle_action("datastores")
        dialog.assert_not_called()
        fake_service.reconnect.assert_called_once_with()


class TestGuestAddresses:
    """Addresses reported by the guest agent show up on the VM row."""

    def test_guest_info_fills_row(self, app, fake_service, make_vm):
        fake_service.get_vm.return_value = make_vm()
        fake_service.guest_addresses.return_value = [GuestAddress("eth0", "52:54:00:aa:bb:cc", "10.0.0.5", 24)]
        with patch("vmdeck.ui.app.MessageDialog"):
            app._run_action(Action.GUEST_INFO)

        assert app.main_screen.selected_vm.primary_ipv4 == "10.0.0.5"

    def test_addresses_survive_refresh_until_stopped(self, app, fake_service, make_vm):
        app.main_screen.remember_addresses(VM_UUID, [GuestAddress("eth0", "", "10.0.0.5", 24)])

        fake_service.list_vms.return_value = [make_vm()]
        app.main_screen.refresh_vms()
        assert app.main_screen.selected_vm.primary_ipv4 == "10.0.0.5"

        fake_service.list_vms.return_value = [make_vm(state=VMState.SHUTOFF)]
        app.main_screen.refresh_vms()
        assert app.main_screen.selected_vm.addresses == []
        assert VM_UUID not in app.main_screen.guest_addresses


class TestRecentEvents:
    """Lifecycle events of every VM."""

    def test_dialog_lists_newest_first(self, app):
        app.session.events.record(VM_UUID, "web01", URI, "started", 1)
        app.session.events.record(VM_UUID, "web01", URI, "stopped", 0)
        with patch("vmdeck.ui.app.MessageDialog") as dialog:
            app._handle_action("all_events")

        title, text = dialog.call_args.args[2:4]
        assert title == "Recent events (2)"
        lines = text.splitlines()
        assert "stopped" in lines[2]
        assert "started" in lines[3]

    def test_no_events(self, app):
        with patch("vmdeck.ui.app.MessageDialog") as dialog:
            app._handle_action("all_events")
        dialog.assert_not_called()
        assert app.main_screen.status_message == "No lifecycle events received yet"

