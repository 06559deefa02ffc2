"""
Security utilities for template build operations.

This module provides input validation and command sanitization for everything
that ends up in a shell command on the Proxmox host or the build machine.
"""

import re
import shlex
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

from .exceptions import ValidationError

# Proxmox accepts VMIDs in this range
MIN_VMID = 100
MAX_VMID = 999_999_999


class SecurityValidator:
    """Security validation utilities."""

    HOSTNAME_PATTERN = re.compile(r"^[a-zA-Z0-9.-]+$")
    STORAGE_POOL_PATTERN = re.compile(r"^[a-zA-Z][a-zA-Z0-9_.-]*$")
    BRIDGE_PATTERN = re.compile(r"^[a-zA-Z0-9_.-]+$")
    DISK_SIZE_PATTERN = re.compile(r"^\+?\d+[KMGT]?$")

    @staticmethod
    def validate_vmid(vmid: int) -> int:
        """
        Validate a Proxmox VMID.

        Raises:
            ValidationError: If the VMID is not an integer in the Proxmox range
        """
        if isinstance(vmid, bool) or not isinstance(vmid, int):
            raise ValidationError(f"VMID must be an integer, got {vmid!r}", "vmid")
        if not MIN_VMID <= vmid <= MAX_VMID:
            raise ValidationError(
                f"VMID {vmid} outside of {MIN_VMID}-{MAX_VMID}", "vmid"
            )
        return vmid

    @staticmethod
    def validate_hostname(hostname: str) -> str:
        """
        Validate and sanitize hostname.

        Args:
            hostname: Hostname to validate

        Returns:
            str: Validated hostname

        Raises:
            ValidationError: If hostname is invalid
        """
        if not hostname or not isinstance(hostname, str):
            raise ValidationError("Hostname must be a non-empty string")

        if len(hostname) > 253:
            raise ValidationError("Hostname must be 253 characters or less")

        if not SecurityValidator.HOSTNAME_PATTERN.match(hostname):
            raise ValidationError(
                "Hostname can only contain letters, numbers, dots, and hyphens"
            )

        return hostname

    @staticmethod
    def validate_storage_pool(pool: str) -> str:
        if not pool or not SecurityValidator.STORAGE_POOL_PATTERN.match(pool):
            raise ValidationError(f"Invalid storage pool name: {pool!r}", "storage")
        return pool

    @staticmethod
    def validate_bridge(bridge: str) -> str:
        if not bridge or not SecurityValidator.BRIDGE_PATTERN.match(bridge):
            raise ValidationError(f"Invalid bridge name: {bridge!r}", "network")
        return bridge

    @staticmethod
    def validate_disk_size(size: str) -> str:
        if not size or not SecurityValidator.DISK_SIZE_PATTERN.match(size):
            raise ValidationError(
                f"Invalid disk size: {size!r} (expected e.g. 8G or +2G)", "disk"
            )
        return size

    @staticmethod
    def validate_url(url: str) -> str:
        """Only http(s) image sources are downloaded."""
        parsed = urlparse(url or "")
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValidationError(f"Invalid image URL: {url!r}", "url")
        return url

    @staticmethod
    def validate_working_dir(path: str) -> str:
        """Image directory that cleanup may remove recursively."""
        parts = Path(path or "").parts
        if not path or not Path(path).is_absolute() or len(parts) < 2 or ".." in parts:
            raise ValidationError(f"Invalid working directory: {path!r}", "path")
        return path


class CommandBuilder:
    """Secure command building utilities."""

    QM_ACTIONS = {"create", "set", "destroy", "status", "template", "disk resize", "config"}

    @staticmethod
    def build_qm_command(action: str, vmid: int, *args: Any) -> str:
        """
        Build a safe ``qm`` command.

        Args:
            action: qm sub-command (e.g. "create", "set")
            vmid: Target VMID
            *args: Additional arguments, quoted individually

        Returns:
            str: Safe qm command
        """
        if action not in CommandBuilder.QM_ACTIONS:
            raise ValidationError(f"Invalid qm action: {action}")

        vmid = SecurityValidator.validate_vmid(vmid)
        cmd_parts = ["qm", *action.split(), str(vmid)]

        for arg in args:
            if arg is not None:
                cmd_parts.append(shlex.quote(str(arg)))

        return " ".join(cmd_parts)

    @staticmethod
    def build_command(*argv: Any) -> str:
        """Join an argv list into a shell command, quoting every element."""
        return " ".join(shlex.quote(str(arg)) for arg in argv if arg is not None)


class SSHSecurity:
    """SSH security utilities."""

    @staticmethod
    def get_known_hosts_policy(policy: str = "strict") -> Any:
        """
        Get the paramiko host key policy for a policy name.

        Args:
            policy: "strict" rejects unknown hosts, "warn" logs and accepts,
                "accept" adds them to the known hosts silently

        Returns:
            paramiko.MissingHostKeyPolicy: Host key policy
        """
        import paramiko

        policies = {
            "strict": paramiko.RejectPolicy,
            "warn": paramiko.WarningPolicy,
            "accept": paramiko.AutoAddPolicy,
        }
        try:
            return policies[policy.lower()]()
        except KeyError:
            raise ValidationError(
                f"Unknown host key policy: {policy} (use strict, warn or accept)",
                "ssh",
            )

    @staticmethod
    def validate_ssh_key_path(key_path: str) -> str:
        """
        Validate SSH private key path.

        Args:
            key_path: Path to SSH private key

        Returns:
            str: Validated key path

        Raises:
            ValidationError: If key path is invalid
        """
        if not key_path:
            raise ValidationError("SSH key path cannot be empty")

        key_file = Path(key_path).expanduser()

        if not key_file.exists():
            raise ValidationError(f"SSH key file not found: {key_path}")

        if not key_file.is_file():
            raise ValidationError(f"SSH key path is not a file: {key_path}")

        # Key files must be readable only by the owner
        stat_info = key_file.stat()
        if stat_info.st_mode & 0o077:
            raise ValidationError(
                f"SSH key file has insecure permissions: {key_path}. "
                "Key files should be readable only by the owner (chmod 600)."
            )

        return str(key_file)
