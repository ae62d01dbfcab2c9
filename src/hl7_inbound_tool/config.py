# src/hl7_inbound_tool/config.py
"""
Configuration utilities for hl7_inbound_tool.

Provides a dataclass-based configuration object holding the pipeline
constants (supported HL7 version and message type, the proposed-concept
sentinel) and a loader that reads YAML configuration files when present.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml

from .exceptions import ConfigError


@dataclass(frozen=True)
class AppConfig:
    """
    Immutable application configuration.

    Attributes
    ----------
    supported_version : str
        The only HL7 version (MSH-12) the processor accepts.
    supported_message_type : str
        The only message type (MSH-9.1) the processor accepts.
    proposed_concept_identifier : str
        Sentinel in the first component of a coded OBX-5 value that turns
        the observation into a concept proposal.
    concept_proposal_state : str
        State recorded on newly created concept proposals.
    log_format : str
        Format string handed to logging_utils.configure_logging.
    """

    supported_version: str = "2.5"
    supported_message_type: str = "ORU"
    proposed_concept_identifier: str = "PROPOSED"
    concept_proposal_state: str = "UNMAPPED"
    log_format: str = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def load_config(path: Optional[Path]) -> AppConfig:
    """
    Load application configuration from a YAML file.

    Parameters
    ----------
    path : Path or None
        Path to a YAML config file. If None, defaults are used.

    Returns
    -------
    AppConfig
        The loaded configuration.

    Raises
    ------
    TypeError
        If the YAML file does not parse to a mapping at the top level.
    ConfigError
        If the mapping holds unknown keys or non-string values.
    yaml.YAMLError
        If the file is not valid YAML.
    """
    if path is None:
        return AppConfig()

    data: Any = yaml.safe_load(path.read_text())

    if data is None:
        return AppConfig()

    if not isinstance(data, Mapping):
        raise TypeError(
            f"Config file must contain a mapping at top level, "
            f"got {type(data).__name__}. "
            f"Config file: {path}"
        )

    known = {f.name for f in fields(AppConfig)}
    unknown = sorted(str(k) for k in data if k not in known)
    if unknown:
        raise ConfigError(f"Unknown config keys in {path}: {', '.join(unknown)}")

    values = {}
    for key, val in data.items():
        # YAML reads 2.5 as a float; versions are compared as text
        if isinstance(val, (int, float)) and not isinstance(val, bool):
            val = str(val)
        if not isinstance(val, str) or not val:
            raise ConfigError(f"Config value for {key!r} must be a non-empty string")
        values[key] = val
    return AppConfig(**values)
