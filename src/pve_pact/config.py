"""
Configuration management for template build operations.

This module handles loading and validating configuration from YAML files,
shell-style answerfiles (``Options.ini``) and environment variables.
"""

import os
import shlex
import yaml
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field, field_validator, model_validator, ConfigDict

from .exceptions import ConfigurationError
from .logging import logger
from .models import BuildOptions, PackerSettings, TemplateSettings

DEFAULT_CONFIG_PATHS = [
    "~/.config/pve-pact/config.yaml",
    "/etc/pve-pact/config.yaml",
    "config.yaml",
    "Options.ini",
]

# Answerfile flags that select a distribution
ANSWERFILE_DISTRO_FLAGS = {
    "Download_DEBIAN_11": "debian11",
    "Download_DEBIAN_12": "debian12",
    "Download_DEBIAN_13": "debian13",
    "Download_UBUNTU_2204": "ubuntu2204",
    "Download_UBUNTU_2404": "ubuntu2404",
    "Download_UBUNTU_2504": "ubuntu2504",
    "Download_FEDORA_41": "fedora41",
    "Download_ROCKY_LINUX_9": "rocky9",
}

# Answerfile variable -> AppConfig field
ANSWERFILE_KEYS = {
    "PROXMOX_HOST": "proxmox_host",
    "PROXMOX_HOST_NODE": "proxmox_host_node",
    "PROXMOX_SSH_USER": "ssh_user",
    "PROXMOX_SSH_PASSWORD": "ssh_password",
    "PROXMOX_SSH_PORT": "ssh_port",
    "PROXMOX_STORAGE_POOL": "storage_pool",
    "SSH_PRIVATE_KEY_PATH": "ssh_key_path",
    "PACKER_TOKEN_ID": "packer_token_id",
    "PACKER_TOKEN_SECRET": "packer_token_secret",
    "nVMID": "vmid_base",
}


class AppConfig(BaseModel):
    """Application configuration with Pydantic validation.

    Configuration can be loaded from:
    1. Explicit config file path (YAML or KEY=value answerfile)
    2. Default config file locations
    3. Environment variables (highest priority)

    Environment variables use the ``PVE_PACT_`` prefix followed by the field
    name in upper case (e.g. ``PVE_PACT_VMID_BASE``). The variable names of
    the shell answerfile (``PROXMOX_HOST``, ``nVMID``, ...) are accepted
    as well.
    """

    model_config = ConfigDict(extra="forbid")

    # Connection
    mode: str = Field(default="ssh", description="ssh or local")
    proxmox_host: str = "pve.local"
    proxmox_host_node: str = "pve"
    ssh_user: str = "root"
    ssh_port: int = Field(default=22, gt=0, le=65535)
    ssh_key_path: Optional[str] = None
    ssh_password: Optional[str] = None
    ssh_host_key_policy: str = "strict"
    default_timeout: int = Field(default=30, gt=0, description="SSH timeout in seconds")
    command_timeout: int = Field(
        default=1800, gt=0, description="Timeout for a single remote command"
    )
    log_level: str = Field(default="INFO", description="Logging level")

    # Build
    storage_pool: str = "local-lvm"
    vmid_base: int = Field(default=800, gt=0)
    build: str = "all"
    rebuild: bool = False
    packer: bool = False
    cleanup: bool = False
    halt_on_conflict: bool = False
    install_tooling: bool = True

    # Base template
    working_dir: str = "/root/workingdir"
    bridge: str = "vmbr0"
    memory: int = Field(default=1024, gt=0)
    cores: int = Field(default=4, gt=0)
    disk_size: str = Field(default="8G", pattern=r"^\+?\d+[KMGT]?$")

    # Packer
    packer_template: str = "./Packer/Templates/universal.pkr.hcl"
    packer_varfile: str = "./Packer/Variables/vars.json"
    packer_playbook: Optional[str] = None
    packer_token_id: Optional[str] = None
    packer_token_secret: Optional[str] = None
    packer_timeout: int = Field(default=3600, gt=0)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate and normalize log level."""
        v = v.upper()
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}")
        return v

    @field_validator("mode")
    @classmethod
    def validate_mode(cls, v: str) -> str:
        v = v.lower()
        if v not in ("ssh", "local"):
            raise ValueError("mode must be 'ssh' or 'local'")
        return v

    @field_validator("ssh_host_key_policy")
    @classmethod
    def validate_host_key_policy(cls, v: str) -> str:
        v = v.lower()
        if v not in ("strict", "warn", "accept"):
            raise ValueError("ssh_host_key_policy must be one of strict, warn, accept")
        return v

    @model_validator(mode="after")
    def check_packer_credentials(self) -> "AppConfig":
        if self.packer and not (self.packer_token_id and self.packer_token_secret):
            raise ValueError(
                "packer_token_id and packer_token_secret are required when packer is enabled"
            )
        return self

    def build_options(self, dry_run: bool = False) -> BuildOptions:
        return BuildOptions(
            base=self.vmid_base,
            storage_pool=self.storage_pool,
            rebuild=self.rebuild,
            customize=self.packer,
            cleanup=self.cleanup,
            halt_on_conflict=self.halt_on_conflict,
            dry_run=dry_run,
        )

    def template_settings(self) -> TemplateSettings:
        return TemplateSettings(
            bridge=self.bridge,
            memory=self.memory,
            cores=self.cores,
            disk_size=self.disk_size,
            working_dir=self.working_dir,
        )

    def packer_settings(self) -> PackerSettings:
        return PackerSettings(
            template=self.packer_template,
            varfile=self.packer_varfile,
            playbook=self.packer_playbook,
            proxmox_host=self.proxmox_host,
            proxmox_node=self.proxmox_host_node,
            token_id=self.packer_token_id,
            token_secret=self.packer_token_secret,
        )


def parse_answerfile(text: str) -> Dict[str, str]:
    """
    Parse a shell-style ``KEY=value`` answerfile.

    Blank lines and ``#`` comments are skipped, an ``export`` prefix is
    allowed and values may be quoted the way a shell would read them.
    """
    values: Dict[str, str] = {}
    for lineno, line in enumerate(text.splitlines(), 1):
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export "):].lstrip()
        key, sep, raw_value = line.partition("=")
        key = key.strip()
        if not sep or not key.isidentifier():
            raise ConfigurationError(f"Invalid answerfile line {lineno}: {line}")
        try:
            parts = shlex.split(raw_value, comments=True)
        except ValueError as e:
            raise ConfigurationError(f"Invalid answerfile line {lineno}: {e}")
        values[key] = " ".join(parts)
    return values


def answerfile_to_config(values: Dict[str, str]) -> Dict[str, Any]:
    """Map answerfile variables onto AppConfig fields."""
    config_data: Dict[str, Any] = {}
    selected: List[str] = []
    saw_flags = False

    for key, value in values.items():
        if key in ANSWERFILE_DISTRO_FLAGS:
            saw_flags = True
            if value.strip().upper() in ("Y", "YES", "TRUE", "1"):
                selected.append(ANSWERFILE_DISTRO_FLAGS[key])
        elif key in ANSWERFILE_KEYS:
            config_data[ANSWERFILE_KEYS[key]] = value
        elif key.lower() in AppConfig.model_fields:
            config_data[key.lower()] = value
        else:
            logger.debug(f"Ignoring unknown answerfile variable {key}")

    if saw_flags:
        config_data["build"] = ",".join(selected)
    return config_data


class ConfigLoader:
    """Loads and validates configuration."""

    def __init__(self) -> None:
        self.logger = logger

    def find_config(self) -> Optional[str]:
        for path in DEFAULT_CONFIG_PATHS:
            expanded = os.path.expanduser(path)
            if os.path.exists(expanded):
                return expanded
        return None

    def load_config(
        self, config_path: Optional[str] = None, use_env: bool = True
    ) -> AppConfig:
        """
        Load configuration from file and environment variables.

        Priority (highest to lowest):
        1. Environment variables
        2. Config file (explicit path or default locations)
        3. Default values

        Args:
            config_path: Path to configuration file. If None, looks in default locations.
            use_env: Apply environment variable overrides

        Returns:
            AppConfig: Loaded configuration
        """
        if config_path:
            config_data = self._load_data_from_file(config_path)
        else:
            config_data = {}
            found = self.find_config()
            if found:
                self.logger.info(f"Loading configuration from {found}", path=found)
                config_data = self._load_data_from_file(found)
            else:
                self.logger.info(
                    "No configuration file found, using defaults and environment variables"
                )

        if use_env:
            config_data = self._apply_env_overrides(config_data)

        try:
            return AppConfig(**config_data)
        except ValueError as e:
            self.logger.error(f"Invalid configuration: {e}")
            raise ConfigurationError(f"Invalid configuration: {e}")

    def _apply_env_overrides(self, config_data: Dict[str, Any]) -> Dict[str, Any]:
        """Apply environment variable overrides to config data."""
        legacy = {
            key: os.environ[key]
            for key in list(ANSWERFILE_KEYS) + list(ANSWERFILE_DISTRO_FLAGS)
            if key in os.environ
        }
        if legacy:
            config_data.update(answerfile_to_config(legacy))
            self.logger.debug(
                "Applied answerfile environment overrides", keys=sorted(legacy)
            )

        for field_name in AppConfig.model_fields:
            env_var = f"PVE_PACT_{field_name.upper()}"
            env_value = os.getenv(env_var)
            if env_value is not None:
                config_data[field_name] = env_value
                self.logger.debug(f"Applied environment override: {env_var}")

        return config_data

    def _load_data_from_file(self, path: str) -> Dict[str, Any]:
        """Load configuration data from a YAML file or an answerfile."""
        path = os.path.expanduser(path)
        try:
            with open(path, "r") as f:
                text = f.read()
        except OSError as e:
            self.logger.error(f"Failed to load configuration from {path}: {e}", path=path)
            raise ConfigurationError(f"Failed to load configuration: {e}")

        if not path.endswith((".yaml", ".yml")):
            return answerfile_to_config(parse_answerfile(text))

        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as e:
            self.logger.error(f"Failed to parse configuration file {path}: {e}", path=path)
            raise ConfigurationError(f"Failed to parse configuration file: {e}")

        if data is None:
            return {}

        if not isinstance(data, dict):
            raise ConfigurationError(f"Invalid configuration format in {path}")

        return data


# Global config loader
config_loader = ConfigLoader()
