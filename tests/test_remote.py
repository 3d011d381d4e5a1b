import os
import tempfile
import unittest
from unittest.mock import MagicMock, patch

import paramiko
from prometheus_client import REGISTRY

from rtc_loadtest.config import TEMPLATES_DIR, Settings
from rtc_loadtest.exceptions import NotConnectedError, RemoteOperationError
from rtc_loadtest.models import Browser, BrowserProperties, Instance, NetworkRestriction
from rtc_loadtest.remote import BrowserSshManager, find_exempt_port

NETSTAT = """Active Internet connections (w/o servers)
Proto Recv-Q Send-Q Local Address           Foreign Address         State
tcp        0      0 10.0.0.5:22             10.0.0.9:51234          ESTABLISHED
tcp        0      0 10.0.0.5:45678          34.1.2.3:4444           ESTABLISHED
tcp        0      0 10.0.0.5:45999          34.1.2.3:44441          ESTABLISHED
"""

TEMPLATES = {
    "allOpen.txt": "iptables -F\n",
    "tcpOnly.txt": "iptables -F\niptables -A OUTPUT -p udp -j DROP\n",
    "turnAux.txt": "iptables -F\niptables -A INPUT -p tcp --dport DYNAMIC_PORT -j ACCEPT\n",
    "turn.txt": "iptables -A OUTPUT -j DROP\n",
    "startRecording.txt": "mkdir -p /rec\nrecord /rec/USERID.mp4\n",
    "stopRecording.txt": "pkill record\n",
    "startTcpdump.txt": "tcpdump -w /dump/USERID.pcap &\n",
    "stopTcpdump.txt": "pkill tcpdump\n",
}


def channel_output(stdout=b"", stderr=b""):
    out, err = MagicMock(), MagicMock()
    out.read.return_value = stdout
    err.read.return_value = stderr
    return MagicMock(), out, err


class TestFindExemptPort(unittest.TestCase):
    
    def test_finds_local_port_of_connection(self):
        self.assertEqual(find_exempt_port(NETSTAT, "34.1.2.3"), "45678")
    
    def test_no_connection(self):
        self.assertIsNone(find_exempt_port(NETSTAT, "34.9.9.9"))
        self.assertIsNone(find_exempt_port(NETSTAT, "34.1.2.3", port=5555))


class TestBrowserSshManager(unittest.TestCase):
    
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        for name, content in TEMPLATES.items():
            with open(os.path.join(self.tmp.name, name), "w") as f:
                f.write(content)
        
        self.settings = Settings(template_dir=self.tmp.name, private_key_path="/keys/id_rsa")
        self.properties = BrowserProperties(user_id="user-1", session_id="session-1")
        self.browser = Browser(Instance("i-123", "34.1.2.3"), self.properties)
        self.client = MagicMock()
        self.client.get_transport.return_value.is_active.return_value = True
        self.client.exec_command.return_value = channel_output()
        self.ssh = BrowserSshManager(self.browser, self.settings, client=self.client)
    
    def tearDown(self):
        self.tmp.cleanup()
    
    def sent_command(self):
        return self.client.exec_command.call_args.args[0]
    
    def test_connects_with_public_key(self):
        self.client.set_missing_host_key_policy.assert_called_once()
        args, kwargs = self.client.connect.call_args
        self.assertEqual(args[0], "34.1.2.3")
        self.assertEqual(kwargs["username"], "ubuntu")
        self.assertEqual(kwargs["key_filename"], "/keys/id_rsa")
        self.assertEqual(kwargs["timeout"], self.settings.ssh_connect_timeout_seconds)
    
    def test_connection_failure_propagates(self):
        client = MagicMock()
        client.connect.side_effect = paramiko.SSHException("refused")
        with self.assertRaises(paramiko.SSHException):
            BrowserSshManager(self.browser, self.settings, client=client)
    
    def test_template_lines_joined(self):
        self.assertEqual(
            self.ssh.read_command_from_file("tcpOnly.txt"),
            "iptables -F && iptables -A OUTPUT -p udp -j DROP",
        )
    
    @patch("rtc_loadtest.remote.run_local_command", return_value=NETSTAT)
    def test_turn_substitutes_discovered_port(self, mock_netstat):
        self.ssh.update_network_restrictions(NetworkRestriction.TURN)
        
        mock_netstat.assert_called_once_with(["netstat", "-tn"])
        self.assertEqual(
            self.sent_command(),
            "iptables -F && iptables -A INPUT -p tcp --dport 45678 -j ACCEPT"
            " && iptables -A OUTPUT -j DROP",
        )
        self.assertEqual(self.properties.network_restriction, NetworkRestriction.TURN)
    
    @patch("rtc_loadtest.remote.run_local_command", return_value=NETSTAT)
    def test_turn_failure_leaves_state_unchanged(self, _):
        self.client.exec_command.return_value = channel_output(stderr=b"iptables: Permission denied")
        with self.assertRaises(RemoteOperationError):
            self.ssh.update_network_restrictions(NetworkRestriction.TURN)
        self.assertEqual(self.properties.network_restriction, NetworkRestriction.ALL_OPEN)
    
    @patch("rtc_loadtest.remote.run_local_command", return_value="")
    def test_turn_without_connection_port_sends_nothing(self, _):
        with self.assertRaises(RemoteOperationError):
            self.ssh.update_network_restrictions(NetworkRestriction.TURN)
        self.client.exec_command.assert_not_called()
    
    def test_tcp_only_success_updates_state(self):
        self.ssh.update_network_restrictions(NetworkRestriction.TCP_ONLY)
        self.assertEqual(self.properties.network_restriction, NetworkRestriction.TCP_ONLY)
    
    def test_missing_template_aborts_without_command(self):
        os.remove(os.path.join(self.tmp.name, "allOpen.txt"))
        self.properties.network_restriction = NetworkRestriction.TCP_ONLY
        
        self.ssh.update_network_restrictions(NetworkRestriction.ALL_OPEN)
        
        self.client.exec_command.assert_not_called()
        self.assertEqual(self.properties.network_restriction, NetworkRestriction.TCP_ONLY)
    
    def test_not_connected_raises_without_call(self):
        self.client.get_transport.return_value = None
        with self.assertRaises(NotConnectedError):
            self.ssh.update_network_restrictions(NetworkRestriction.ALL_OPEN)
        self.client.exec_command.assert_not_called()
    
    def test_start_recording_substitutes_user_id(self):
        self.ssh.start_recording()
        self.assertEqual(self.sent_command(), "mkdir -p /rec && record /rec/user-1.mp4")
    
    def test_start_recording_error_raises(self):
        self.client.exec_command.return_value = channel_output(stderr=b"no display")
        with self.assertRaises(RemoteOperationError) as ctx:
            self.ssh.start_recording()
        self.assertEqual(ctx.exception.output, "no display")
    
    def test_ssh_failure_during_command_is_an_error(self):
        self.client.exec_command.side_effect = paramiko.SSHException("channel closed")
        self.assertIsNone(self.ssh.send_command("true"))
        with self.assertRaises(RemoteOperationError):
            self.ssh.start_recording()
    
    def test_tcp_dump_commands(self):
        self.ssh.start_tcp_dump()
        self.assertEqual(self.sent_command(), "tcpdump -w /dump/user-1.pcap &")
        self.ssh.stop_tcp_dump()
        self.assertEqual(self.sent_command(), "pkill tcpdump")
    
    def test_send_command_returns_output(self):
        self.client.exec_command.return_value = channel_output(stdout=b"ok\n")
        self.assertEqual(self.ssh.send_command("echo ok"), "ok\n")
    
    def test_command_status_follows_error_output(self):
        def count(status):
            labels = {"operation": "stop_tcpdump", "status": status}
            return REGISTRY.get_sample_value("loadtest_remote_commands_total", labels) or 0
        
        success, error = count("success"), count("error")
        self.client.exec_command.return_value = channel_output(stdout=b"12 packets captured\n")
        self.ssh.stop_tcp_dump()
        self.assertEqual(count("success"), success + 1)
        self.assertEqual(count("error"), error)
        
        self.client.exec_command.return_value = channel_output(stderr=b"pkill: no process found")
        self.ssh.stop_tcp_dump()
        self.assertEqual(count("error"), error + 1)


class TestBundledTemplates(unittest.TestCase):
    
    def test_every_template_is_shipped(self):
        for name in TEMPLATES:
            self.assertTrue((TEMPLATES_DIR / name).is_file(), name)
        self.assertIn("DYNAMIC_PORT", (TEMPLATES_DIR / "turnAux.txt").read_text())
        self.assertIn("USERID", (TEMPLATES_DIR / "startRecording.txt").read_text())


if __name__ == '__main__':
    unittest.main()
