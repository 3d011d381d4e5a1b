"""
Remote control of browser instances over SSH.

Commands come from plain text templates (one shell fragment per line, joined
with ``&&``). Two placeholders are substituted textually: ``USERID`` with
the browser's user id and ``DYNAMIC_PORT`` with the local port that must
stay open when only TURN traffic is allowed.
"""

import os
import re
import subprocess
import time
from pathlib import Path
from typing import Optional, Tuple

import paramiko
import structlog

from .config import Settings, get_settings
from .exceptions import NotConnectedError, RemoteOperationError, TemplateError
from .metrics import METRICS
from .models import Browser, NetworkRestriction

logger = structlog.get_logger()

COMMAND_SEPARATOR = " && "
USER_ID_PLACEHOLDER = "USERID"
DYNAMIC_PORT_PLACEHOLDER = "DYNAMIC_PORT"

NETWORK_TEMPLATES = {
    NetworkRestriction.ALL_OPEN: "allOpen.txt",
    NetworkRestriction.TCP_ONLY: "tcpOnly.txt",
}
TURN_AUX_TEMPLATE = "turnAux.txt"
TURN_TEMPLATE = "turn.txt"


def find_exempt_port(netstat_output: str, public_ip: str, port: int = 4444) -> Optional[str]:
    """
    Find the local port of the TCP connection to ``public_ip:port``.
    
    ``netstat -tn`` lines look like
    ``tcp  0  0 10.0.0.5:45678   34.1.2.3:4444   ESTABLISHED``; the local
    port is the word right before the remote address.
    """
    pattern = re.compile(r"(\w+)\s+" + re.escape(f"{public_ip}:{port}") + r"(?!\d)")
    match = pattern.search(netstat_output)
    return match.group(1) if match else None


def run_local_command(args) -> str:
    """Run a command on the machine driving the test and return its stdout."""
    result = subprocess.run(args, capture_output=True, text=True, check=False)
    return result.stdout


class BrowserSshManager:
    """
    SSH channel to the instance hosting one browser.
    
    Usage:
        ssh = BrowserSshManager(browser)
        ssh.start_tcp_dump()
        ssh.update_network_restrictions(NetworkRestriction.TCP_ONLY)
        ssh.close()
    
    Raises on construction if the SSH connection cannot be established.
    """
    
    def __init__(
        self,
        browser: Browser,
        settings: Optional[Settings] = None,
        client: Optional[paramiko.SSHClient] = None,
    ):
        self.settings = settings or get_settings()
        self.instance = browser.instance
        self.properties = browser.properties
        self.template_dir = Path(self.settings.template_dir)
        self._log = logger.bind(user_id=self.properties.user_id, instance=str(self.instance))
        
        self.client = client if client is not None else paramiko.SSHClient()
        self.client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        self.client.connect(
            self.instance.public_ip,
            port=self.settings.ssh_port,
            username=self.settings.ssh_user,
            key_filename=os.path.expanduser(self.settings.private_key_path),
            timeout=self.settings.ssh_connect_timeout_seconds,
            allow_agent=False,
            look_for_keys=False,
        )
    
    def is_connected(self) -> bool:
        transport = self.client.get_transport()
        return transport is not None and transport.is_active()
    
    def close(self):
        self.client.close()
    
    # -------------------------------------------------------------------------
    # Recording
    # -------------------------------------------------------------------------
    
    def start_recording(self):
        """
        Start recording the browser screen.
        
        Raises:
            RemoteOperationError: If the remote side reports an error.
        """
        self._log.info("Starting recording of browser")
        try:
            command = self._user_command("startRecording.txt")
        except TemplateError as e:
            self._log.error("Browser instance won't be recorded", error=str(e))
            return
        
        response = self._execute("start_recording", command)
        if response == "":
            self._log.info("Browser is now being recorded")
        else:
            raise RemoteOperationError("starting recording", self.properties.user_id, response or "")
    
    def stop_recording(self):
        self._log.info("Stopping recording of browser")
        try:
            command = self.read_command_from_file("stopRecording.txt")
        except TemplateError as e:
            self._log.error("Couldn't get recording stop commands", error=str(e))
            return
        self._log.info("Response of stopping recording", response=self._execute("stop_recording", command))
    
    # -------------------------------------------------------------------------
    # Packet capture
    # -------------------------------------------------------------------------
    
    def start_tcp_dump(self):
        self._log.info("Starting tcpdump process of browser")
        try:
            command = self._user_command("startTcpdump.txt")
        except TemplateError as e:
            self._log.error("Browser instance won't gather network info", error=str(e))
            return
        self._log.info("Response of start tcpdump", response=self._execute("start_tcpdump", command))
    
    def stop_tcp_dump(self):
        self._log.info("Stopping tcpdump process of browser")
        try:
            command = self.read_command_from_file("stopTcpdump.txt")
        except TemplateError as e:
            self._log.error("Couldn't get stopping tcpdump commands", error=str(e))
            return
        self._log.info("Response of stop tcpdump", response=self._execute("stop_tcpdump", command))
    
    # -------------------------------------------------------------------------
    # Network restrictions
    # -------------------------------------------------------------------------
    
    def update_network_restrictions(self, restriction: NetworkRestriction):
        """
        Apply ``restriction`` on the remote instance.
        
        The local state only changes once the remote command succeeds.
        
        Raises:
            RemoteOperationError: If the command fails or, for TURN, the port
                to keep open cannot be found.
            NotConnectedError: If there is no SSH connection.
        """
        self._log.info("Updating networking restrictions", restriction=restriction.name)
        try:
            if restriction == NetworkRestriction.TURN:
                command = self._turn_command()
            else:
                command = self.read_command_from_file(NETWORK_TEMPLATES[restriction])
        except TemplateError as e:
            self._log.error("Browser networking won't be changed", error=str(e))
            return
        
        response = self._execute("network_restriction", command)
        if response == "":
            self.properties.change_network_restriction(restriction)
            self._log.info("Networking restrictions successfully updated", restriction=restriction.name)
        else:
            raise RemoteOperationError("configuring network conditions", self.properties.user_id, response or "")
    
    def _turn_command(self) -> str:
        port = find_exempt_port(
            run_local_command(["netstat", "-tn"]),
            self.instance.public_ip,
            self.settings.recording_port,
        )
        if port is None:
            raise RemoteOperationError(
                f"looking for the connection to port {self.settings.recording_port}",
                self.properties.user_id,
            )
        self._log.info("Not blocking port in remote browser machine", port=port)
        
        aux = self.read_command_from_file(TURN_AUX_TEMPLATE).replace(DYNAMIC_PORT_PLACEHOLDER, port)
        return aux + COMMAND_SEPARATOR + self.read_command_from_file(TURN_TEMPLATE)
    
    # -------------------------------------------------------------------------
    # Command plumbing
    # -------------------------------------------------------------------------
    
    def read_command_from_file(self, file_name: str) -> str:
        """
        Load a command template, joining its lines with ``&&``.
        
        Raises:
            TemplateError: If the file is missing or unreadable.
        """
        path = self.template_dir / file_name
        try:
            text = path.read_text()
        except OSError as e:
            raise TemplateError(file_name, str(e)) from e
        return COMMAND_SEPARATOR.join(line for line in text.splitlines() if line.strip())
    
    def _user_command(self, file_name: str) -> str:
        return self.read_command_from_file(file_name).replace(USER_ID_PLACEHOLDER, self.properties.user_id)
    
    def _execute(self, operation: str, command: str) -> Optional[str]:
        start = time.perf_counter()
        result = self._run_command(command)
        METRICS.remote_command_latency.labels(operation=operation).observe(time.perf_counter() - start)
    
        # Plain stdout from a stop command is still a success
        status = "success" if result is not None and not result[1] else "error"
        METRICS.remote_commands.labels(operation=operation, status=status).inc()
        return self._response(result)
    
    def send_command(self, command: str) -> Optional[str]:
        """
        Run ``command`` on the instance.
    
        Returns:
            The error output if any was produced, the standard output
            otherwise, or None if the SSH exchange itself failed.
    
        Raises:
            NotConnectedError: If the SSH connection is not open.
        """
        return self._response(self._run_command(command))
    
    @staticmethod
    def _response(result: Optional[Tuple[str, str]]) -> Optional[str]:
        if result is None:
            return None
        output, error = result
        return error or output
    
    def _run_command(self, command: str) -> Optional[Tuple[str, str]]:
        """Return ``(stdout, stderr)``, or None if the SSH exchange failed."""
        if not self.is_connected():
            self._log.error("There's no SSH connection to instance. Cannot send command", command=command)
            raise NotConnectedError(
                f"No SSH connection to instance {self.instance.instance_id} "
                f"of user {self.properties.user_id}"
            )
        
        try:
            _, stdout, stderr = self.client.exec_command(
                command, timeout=self.settings.ssh_channel_timeout_seconds
            )
            output = stdout.read().decode(errors="replace")
            error = stderr.read().decode(errors="replace")
        except (paramiko.SSHException, OSError) as e:
            self._log.warning("SSH command failed", command=command, error=str(e))
            return None
        
        if error:
            self._log.error(
                "Error sending command",
                command=command,
                host=self.instance.public_ip,
                error=error,
            )
        return output, error
