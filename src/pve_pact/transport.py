"""
Command transport for template build operations.

Commands for the Proxmox host run either over an SSH session or, when the
tool runs on the Proxmox host itself, as local subprocesses. Both connection
types expose the same ``execute_command`` coroutine.
"""

import asyncio
import getpass
import os
from typing import Optional, Dict, Any, AsyncIterator, Union
from pathlib import Path
import paramiko
from contextlib import asynccontextmanager

from .logging import logger

from .exceptions import SSHError, AuthenticationError, ConnectionError, TimeoutError
from .security import SecurityValidator, SSHSecurity


class SSHConnection:
    """Represents a single SSH connection."""

    def __init__(
        self,
        host: str,
        port: int = 22,
        username: Optional[str] = None,
        key_path: Optional[str] = None,
        password: Optional[str] = None,
        timeout: int = 30,
        max_retries: int = 3,
        host_key_policy: str = "strict",
    ):
        """Initialize SSH connection.

        Args:
            host: Hostname to connect to
            port: SSH port (default: 22, can be overridden by SSH config)
            username: SSH username (default: auto-detect from environment)
            key_path: Path to SSH private key (default: use SSH agent if available)
            password: Password for password authentication
            timeout: Connection timeout in seconds
            max_retries: Maximum number of connection retry attempts
            host_key_policy: strict, warn or accept
        """
        self.host = host
        self.port = port
        self.username = username
        self.key_path = key_path
        self.password = password
        self.timeout = timeout
        self.max_retries = max_retries
        self.host_key_policy = host_key_policy
        self.client: Optional[paramiko.SSHClient] = None

        self._ssh_config = self._load_ssh_config()

    def _load_ssh_config(self) -> Optional[Dict[str, Any]]:
        """Load SSH configuration for the host from ~/.ssh/config."""
        try:
            ssh_config_path = Path.home() / ".ssh" / "config"
            if not ssh_config_path.exists():
                return None

            ssh_config = paramiko.SSHConfig()
            with open(ssh_config_path) as f:
                ssh_config.parse(f)

            return ssh_config.lookup(self.host)
        except Exception as e:
            logger.debug(f"Could not load SSH config: {e}")
            return None

    def _get_username(self) -> str:
        """Get username from config, SSH config, or environment."""
        if self.username:
            return self.username

        if self._ssh_config and "user" in self._ssh_config:
            return self._ssh_config["user"]

        username = os.getenv("USER") or os.getenv("USERNAME")
        if username:
            logger.debug(f"Auto-detected username: {username}")
            return username

        return getpass.getuser()

    def _get_port(self) -> int:
        """Get port from SSH config or use default."""
        if self._ssh_config and "port" in self._ssh_config:
            try:
                return int(self._ssh_config["port"])
            except (ValueError, TypeError):
                pass
        return self.port

    def _get_hostname(self) -> str:
        """Get actual hostname from SSH config (handles aliases)."""
        if self._ssh_config and "hostname" in self._ssh_config:
            return self._ssh_config["hostname"]
        return self.host

    def _connect_kwargs(self, hostname: str, port: int, username: str) -> Dict[str, Any]:
        connect_kwargs: Dict[str, Any] = {
            "hostname": hostname,
            "port": port,
            "username": username,
            "timeout": self.timeout,
            "allow_agent": self.password is None,
            "look_for_keys": self.password is None,
        }

        if self.password is not None:
            connect_kwargs["password"] = self.password
            return connect_kwargs

        if self.key_path:
            try:
                validated_key_path = SSHSecurity.validate_ssh_key_path(self.key_path)
                connect_kwargs["key_filename"] = validated_key_path
                logger.debug(f"Using SSH key: {validated_key_path}")
            except Exception as key_error:
                # Agent or default keys may still work
                logger.warning(
                    f"SSH key validation failed, will try other methods: {key_error}"
                )

        if self._ssh_config and "identityfile" in self._ssh_config:
            identity_files = self._ssh_config["identityfile"]
            if isinstance(identity_files, list):
                connect_kwargs["key_filename"] = [
                    str(Path(f).expanduser()) for f in identity_files
                ]
            else:
                connect_kwargs["key_filename"] = str(Path(identity_files).expanduser())

        return connect_kwargs

    @property
    def auth_method(self) -> str:
        if self.password is not None:
            return "password"
        return "key" if self.key_path else "agent"

    async def connect(self) -> None:
        """Establish SSH connection with retry logic."""
        last_error: Optional[Exception] = None
        actual_hostname = self._get_hostname()
        actual_port = self._get_port()
        username = self._get_username()
        connect_kwargs = self._connect_kwargs(actual_hostname, actual_port, username)

        for attempt in range(self.max_retries):
            try:
                self.client = paramiko.SSHClient()
                self.client.set_missing_host_key_policy(
                    SSHSecurity.get_known_hosts_policy(self.host_key_policy)
                )

                try:
                    self.client.load_system_host_keys()
                except Exception as e:
                    logger.debug(f"Could not load system host keys: {e}")

                loop = asyncio.get_running_loop()
                await loop.run_in_executor(
                    None,
                    lambda: self.client.connect(**connect_kwargs),  # type: ignore[union-attr]
                )

                logger.info(
                    f"SSH connection established to {actual_hostname}:{actual_port} as {username}",
                    host=actual_hostname,
                    port=actual_port,
                    username=username,
                    auth_method=self.auth_method,
                    attempt=attempt + 1,
                )
                return

            except paramiko.AuthenticationException as e:
                # Auth errors will not succeed on retry
                error_msg = f"{username}@{actual_hostname}: {e}"
                logger.error(
                    f"Authentication failed for {error_msg}", host=actual_hostname
                )
                raise AuthenticationError(error_msg, actual_hostname, self.auth_method)

            except paramiko.SSHException as e:
                last_error = e
                error_str = str(e).lower()

                if "not found in known_hosts" in error_str or "no hostkey" in error_str:
                    error_msg = (
                        f"Host key verification failed for {actual_hostname}. "
                        f"Connect once with 'ssh {actual_hostname}' or set "
                        "ssh_host_key_policy to 'warn' or 'accept'."
                    )
                    logger.error(error_msg, host=actual_hostname)
                    raise SSHError(error_msg, actual_hostname, "hostkey_verification")

                if attempt < self.max_retries - 1:
                    wait_time = 2 ** attempt
                    logger.warning(
                        f"SSH error connecting to {actual_hostname}: {e}, retrying in {wait_time}s",
                        host=actual_hostname,
                        attempt=attempt + 1,
                    )
                    await asyncio.sleep(wait_time)
                    continue
                error_msg = f"SSH error connecting to {actual_hostname}: {e}"
                logger.error(error_msg, host=actual_hostname, exc_info=True)
                raise SSHError(error_msg, actual_hostname, "connection")

            except OSError as e:
                last_error = e
                if attempt < self.max_retries - 1:
                    wait_time = 2 ** attempt
                    logger.warning(
                        f"Network error connecting to {actual_hostname}: {e}, retrying in {wait_time}s "
                        f"(attempt {attempt + 1}/{self.max_retries})",
                        host=actual_hostname,
                    )
                    await asyncio.sleep(wait_time)
                    continue

                error_msg = (
                    f"Network error connecting to {actual_hostname}:{actual_port}: {e}. "
                    "Please check network connectivity and hostname."
                )
                logger.error(error_msg, host=actual_hostname, exc_info=True)
                raise ConnectionError(error_msg, actual_hostname)

        error_msg = (
            f"Failed to connect to {actual_hostname} after {self.max_retries} attempts. "
            f"Last error: {last_error}"
        )
        logger.error(error_msg, host=actual_hostname)
        raise ConnectionError(error_msg, actual_hostname)

    async def execute_command(
        self,
        command: str,
        timeout: Optional[int] = None,
        log_command: Optional[str] = None,
    ) -> tuple[str, str, int]:
        """
        Execute a command over SSH.

        ``log_command`` replaces ``command`` in log records when the command
        carries credentials.
        """
        if not self.client:
            raise SSHError("Not connected", self.host, "command_execution")

        cmd_timeout = timeout or self.timeout
        shown = log_command or command
        logger.debug(f"Executing on {self.host}: {shown}", host=self.host)
        try:
            loop = asyncio.get_running_loop()
            stdin, stdout, stderr = await loop.run_in_executor(
                None, self.client.exec_command, command
            )

            stdout_data = await asyncio.wait_for(
                loop.run_in_executor(None, stdout.read), timeout=cmd_timeout
            )
            stderr_data = await asyncio.wait_for(
                loop.run_in_executor(None, stderr.read), timeout=cmd_timeout
            )
            exit_code = await loop.run_in_executor(
                None, stdout.channel.recv_exit_status
            )

            return (
                stdout_data.decode("utf-8", errors="replace"),
                stderr_data.decode("utf-8", errors="replace"),
                exit_code,
            )

        except asyncio.TimeoutError:
            logger.error(
                f"Command execution timed out on {self.host}",
                host=self.host,
                command=shown,
                timeout=cmd_timeout,
            )
            raise TimeoutError(
                "Command execution timed out", "command_execution", cmd_timeout
            )
        except Exception as e:
            logger.error(
                f"Command execution failed on {self.host}: {e}",
                host=self.host,
                command=shown,
                exc_info=True,
            )
            raise SSHError(str(e), self.host, "command_execution")

    async def close(self) -> None:
        """Close SSH connection."""
        if self.client:
            self.client.close()
            self.client = None

        logger.info(f"SSH connection closed to {self.host}", host=self.host)


class LocalConnection:
    """Runs commands on this machine through the shell."""

    host = "localhost"

    def __init__(self, timeout: int = 30, cwd: Optional[str] = None):
        self.timeout = timeout
        self.cwd = cwd

    async def connect(self) -> None:
        return None

    async def execute_command(
        self,
        command: str,
        timeout: Optional[int] = None,
        log_command: Optional[str] = None,
    ) -> tuple[str, str, int]:
        """Execute a command in a local shell."""
        cmd_timeout = timeout or self.timeout
        shown = log_command or command
        logger.debug(f"Executing locally: {shown}", host=self.host)
        process = await asyncio.create_subprocess_shell(
            command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=self.cwd,
        )
        try:
            stdout_data, stderr_data = await asyncio.wait_for(
                process.communicate(), timeout=cmd_timeout
            )
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            logger.error(
                "Local command timed out", command=shown, timeout=cmd_timeout
            )
            raise TimeoutError(
                "Command execution timed out", "command_execution", cmd_timeout
            )

        return (
            stdout_data.decode("utf-8", errors="replace"),
            stderr_data.decode("utf-8", errors="replace"),
            process.returncode if process.returncode is not None else -1,
        )

    async def close(self) -> None:
        return None


Connection = Union[SSHConnection, LocalConnection]


class SSHTransport:
    """SSH transport manager reusing one connection per host."""

    def __init__(
        self,
        key_path: Optional[str] = None,
        password: Optional[str] = None,
        timeout: int = 30,
        max_retries: int = 3,
        host_key_policy: str = "strict",
    ):
        """Initialize SSH transport.

        Args:
            key_path: Path to SSH private key (optional, will use agent/auto-detect)
            password: Password for password authentication
            timeout: Connection timeout in seconds
            max_retries: Maximum number of connection retry attempts
            host_key_policy: strict, warn or accept
        """
        self.key_path = key_path
        self.password = password
        self.timeout = timeout
        self.max_retries = max_retries
        self.host_key_policy = host_key_policy
        self.connections: Dict[str, SSHConnection] = {}

    @asynccontextmanager
    async def connect(
        self, host: str, port: int = 22, username: Optional[str] = None
    ) -> AsyncIterator[SSHConnection]:
        """Create a managed SSH connection."""
        host = SecurityValidator.validate_hostname(host)
        connection_key = f"{host}:{port}"

        if connection_key in self.connections:
            yield self.connections[connection_key]
            return

        connection = SSHConnection(
            host=host,
            port=port,
            username=username,
            key_path=self.key_path,
            password=self.password,
            timeout=self.timeout,
            max_retries=self.max_retries,
            host_key_policy=self.host_key_policy,
        )

        await connection.connect()
        # Kept open for reuse until close_all()
        self.connections[connection_key] = connection
        yield connection

    async def close_all(self) -> None:
        """Close all SSH connections."""
        for connection in self.connections.values():
            await connection.close()
        self.connections.clear()
        logger.info("All SSH connections closed")

