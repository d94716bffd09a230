"""Stage a UE identifier into the PacketRusher configuration document."""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Optional

import yaml

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)


class ConfigurationError(RuntimeError):
    """The configuration document is missing, malformed, or did not take the write."""


class ConfigPatcher:
    """Rewrites the ``ue`` section of a PacketRusher config.yml before each session."""

    def __init__(self, config_path: Path):
        self.config_path = Path(config_path)

    @property
    def exists(self) -> bool:
        return self.config_path.is_file()

    def load(self) -> dict:
        """Read and parse the document, raising ConfigurationError on any problem."""
        if not self.exists:
            raise ConfigurationError(f"Config not found at: {self.config_path}")
        try:
            config = yaml.safe_load(self.config_path.read_text(encoding="utf-8"))
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Could not read {self.config_path}: {e}") from e

        if not isinstance(config, dict) or not isinstance(config.get("ue"), dict):
            raise ConfigurationError('Invalid config structure - missing "ue" section')
        return config

    def apply_identifier(
        self,
        identifier: str,
        country_code: Optional[str] = None,
        network_code: Optional[str] = None,
        amf_address: Optional[str] = None,
    ) -> None:
        """Write ``identifier`` as the UE msin and verify it by reading back.

        The home network codes are only written when the document already
        carries a ``ue.hplmn`` section; the AMF address replaces the first
        ``amfif`` entry's ip.
        """
        config = self.load()
        ue = config["ue"]
        ue["msin"] = identifier

        hplmn = ue.get("hplmn")
        if isinstance(hplmn, dict):
            if country_code:
                hplmn["mcc"] = country_code
            if network_code:
                hplmn["mnc"] = network_code

        if amf_address:
            amfif = config.get("amfif")
            if not isinstance(amfif, list) or not amfif or not isinstance(amfif[0], dict):
                raise ConfigurationError('Cannot override AMF address - missing "amfif" list')
            amfif[0]["ip"] = amf_address

        try:
            self.config_path.write_text(
                yaml.safe_dump(config, sort_keys=False, default_flow_style=False),
                encoding="utf-8",
            )
        except OSError as e:
            raise ConfigurationError(f"Could not write {self.config_path}: {e}") from e

        staged = str(self.load()["ue"].get("msin", ""))
        if staged != identifier:
            raise ConfigurationError(
                f"Config read-back mismatch: expected msin {identifier}, found {staged}"
            )
        logger.info(f"Staged msin {identifier} in {self.config_path}")
