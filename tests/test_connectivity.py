"""
Tests for ConnectivityMonitor and HealthCheckSignal.
"""

from unittest.mock import MagicMock

from agriecho.offline import ConnectivityMonitor, HealthCheckSignal
from agriecho.offline.connectivity import ConnectivityState
from agriecho.offline.notifier import SUCCESS, WARNING


class TestConnectivityMonitor:
    """Tests for the two-state connectivity machine."""

    def test_initial_state(self):
        assert ConnectivityMonitor(initial_online=True).state == ConnectivityState.ONLINE
        assert ConnectivityMonitor(initial_online=False).is_online is False

    def test_offline_to_online_fires_listener_once(self):
        monitor = ConnectivityMonitor(initial_online=False)
        listener = MagicMock()
        monitor.add_online_listener(listener)

        assert monitor.notify(True) is True
        assert monitor.notify(True) is False
        assert monitor.notify(True) is False

        listener.assert_called_once_with()

    def test_online_to_offline_fires_offline_listener(self):
        monitor = ConnectivityMonitor(initial_online=True)
        on_online = MagicMock()
        on_offline = MagicMock()
        monitor.add_online_listener(on_online)
        monitor.add_offline_listener(on_offline)

        monitor.go_offline()

        on_offline.assert_called_once_with()
        on_online.assert_not_called()

    def test_transitions_notify_user(self):
        notifier = MagicMock()
        monitor = ConnectivityMonitor(initial_online=True, notifier=notifier)

        monitor.go_offline()
        monitor.go_online()

        assert notifier.notify.call_args_list[0].args == ("You're offline. Data will be saved locally.", WARNING)
        assert notifier.notify.call_args_list[1].args == ("Back online! Syncing your data...", SUCCESS)

    def test_failing_listener_does_not_block_others(self):
        monitor = ConnectivityMonitor(initial_online=False)
        second = MagicMock()
        monitor.add_online_listener(MagicMock(side_effect=RuntimeError('boom')))
        monitor.add_online_listener(second)

        monitor.go_online()

        second.assert_called_once_with()

    def test_one_drain_per_reconnect(self, scheduler):
        """Offline -> Online schedules one drain; repeated Online schedules none."""
        monitor = ConnectivityMonitor(initial_online=False)
        drain = MagicMock()
        monitor.add_online_listener(lambda: scheduler.call_later(0, drain))

        monitor.notify(True)
        monitor.notify(True)
        scheduler.run_pending()
        monitor.notify(True)
        scheduler.run_pending()

        drain.assert_called_once_with()

    def test_get_status(self):
        monitor = ConnectivityMonitor(initial_online=True)
        monitor.go_offline()

        status = monitor.get_status()

        assert status['state'] == 'offline'
        assert status['online'] is False
        assert status['transitions'] == 1


class TestHealthCheckSignal:
    """Tests for the probe hysteresis."""

    def test_three_failures_go_offline(self):
        monitor = ConnectivityMonitor(initial_online=True)
        signal = HealthCheckSignal(monitor, probe=MagicMock(return_value=False))

        signal.check_now()
        signal.check_now()
        assert monitor.is_online is True

        signal.check_now()
        assert monitor.is_online is False

    def test_one_success_goes_online(self):
        monitor = ConnectivityMonitor(initial_online=False)
        signal = HealthCheckSignal(monitor, probe=MagicMock(return_value=True))

        assert signal.check_now() is True
        assert monitor.is_online is True

    def test_success_resets_failure_count(self):
        monitor = ConnectivityMonitor(initial_online=True)
        probe = MagicMock(side_effect=[False, False, True, False, False])
        signal = HealthCheckSignal(monitor, probe=probe)

        for _ in range(5):
            signal.check_now()

        assert monitor.is_online is True
        assert signal.get_status()['total_failures'] == 4

    def test_probe_exception_counts_as_failure(self):
        monitor = ConnectivityMonitor(initial_online=True)
        signal = HealthCheckSignal(monitor, probe=MagicMock(side_effect=RuntimeError('boom')))

        assert signal.check_now() is False
        assert signal.get_status()['consecutive_failures'] == 1

    def test_start_and_stop(self):
        monitor = ConnectivityMonitor(initial_online=True)
        probe = MagicMock(return_value=True)
        signal = HealthCheckSignal(monitor, probe=probe, interval_online=60)

        signal.start()
        signal.stop()

        assert probe.call_count >= 1
