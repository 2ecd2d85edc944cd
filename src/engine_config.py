"""
Engine configuration loaded from config.ini.

Reference data that used to be hard-coded in the client (special codes,
reason lists) is operational configuration here. Example config.ini:

    [Matching]
    PreserveCodes = 17061, 18001, 17133

    [Reasons]
    Shortage = Out of stock; Item not found; Damaged product; Other
    Pause = Health break; Lunch; End of shift; Other
    AllowCustom = yes

    [Workflow]
    RequireShortageReason = yes
    AutoFinishPicking = no
    AutoFinishControl = yes

    [Concurrency]
    LockTimeoutSeconds = 5

    [Storage]
    DatabasePath = fulfillment.db
"""

import configparser
from dataclasses import dataclass, field
from pathlib import Path
from typing import FrozenSet, List, Optional

from exceptions import ConfigurationError
from logger import get_logger

logger = get_logger(__name__)

DEFAULT_SHORTAGE_REASONS = [
    "Out of stock",
    "Item not found",
    "Damaged product",
    "Other",
]

DEFAULT_PAUSE_REASONS = [
    "Health break",
    "Lunch",
    "End of shift",
    "Other",
]


def _split_list(raw: str, separator: str) -> List[str]:
    return [part.strip() for part in raw.split(separator) if part.strip()]


@dataclass
class EngineConfig:
    """
    Runtime settings for the reconciliation engine.

    Attributes:
        preserve_codes: Codes the matcher must never reinterpret
        shortage_reasons: Catalog of shortage reasons offered to operators
        pause_reasons: Catalog of pause reasons offered to operators
        allow_custom_reasons: Accept free-text reasons outside the catalogs
        require_shortage_reason: Reject shortage-producing scans without a reason
        auto_finish_picking: Complete picking sessions as soon as they are completable
        auto_finish_control: Finalize control sessions as soon as they are completable
        lock_timeout_seconds: How long to wait for another writer on the same session
        database_path: SQLite file for SQLiteSessionStore (None = in-memory store)
    """
    preserve_codes: FrozenSet[str] = frozenset()
    shortage_reasons: List[str] = field(default_factory=lambda: list(DEFAULT_SHORTAGE_REASONS))
    pause_reasons: List[str] = field(default_factory=lambda: list(DEFAULT_PAUSE_REASONS))
    allow_custom_reasons: bool = True
    require_shortage_reason: bool = True
    auto_finish_picking: bool = False
    auto_finish_control: bool = True
    lock_timeout_seconds: float = 5.0
    database_path: Optional[str] = None

    def __post_init__(self):
        self.preserve_codes = frozenset(str(c).strip() for c in self.preserve_codes if str(c).strip())
        if self.lock_timeout_seconds < 0:
            raise ConfigurationError(
                f"LockTimeoutSeconds must not be negative (got {self.lock_timeout_seconds})"
            )

    def auto_finish_for(self, kind: str) -> bool:
        """Whether sessions of this kind complete automatically when completable."""
        return self.auto_finish_control if kind == 'control' else self.auto_finish_picking

    @classmethod
    def from_parser(cls, config: configparser.ConfigParser) -> 'EngineConfig':
        """Build settings from an already-read ConfigParser, using defaults for missing keys."""
        try:
            preserve = _split_list(config.get('Matching', 'PreserveCodes', fallback=''), ',')

            shortage_raw = config.get('Reasons', 'Shortage', fallback=None)
            pause_raw = config.get('Reasons', 'Pause', fallback=None)

            return cls(
                preserve_codes=frozenset(preserve),
                shortage_reasons=(_split_list(shortage_raw, ';') if shortage_raw is not None
                                  else list(DEFAULT_SHORTAGE_REASONS)),
                pause_reasons=(_split_list(pause_raw, ';') if pause_raw is not None
                               else list(DEFAULT_PAUSE_REASONS)),
                allow_custom_reasons=config.getboolean('Reasons', 'AllowCustom', fallback=True),
                require_shortage_reason=config.getboolean('Workflow', 'RequireShortageReason', fallback=True),
                auto_finish_picking=config.getboolean('Workflow', 'AutoFinishPicking', fallback=False),
                auto_finish_control=config.getboolean('Workflow', 'AutoFinishControl', fallback=True),
                lock_timeout_seconds=config.getfloat('Concurrency', 'LockTimeoutSeconds', fallback=5.0),
                database_path=config.get('Storage', 'DatabasePath', fallback=None) or None,
            )
        except ValueError as e:
            # getboolean/getfloat raise ValueError on malformed values
            raise ConfigurationError(f"Invalid value in config.ini: {e}") from e

    @classmethod
    def from_file(cls, path) -> 'EngineConfig':
        """
        Load settings from an ini file.

        A missing file is not an error: the defaults are returned, the same way
        logging falls back when config.ini is absent.
        """
        config = configparser.ConfigParser()
        config_path = Path(path)

        if config_path.exists():
            config.read(config_path, encoding='utf-8')
            logger.info(f"Engine configuration loaded from {config_path}")
        else:
            logger.debug(f"No configuration at {config_path}, using defaults")

        return cls.from_parser(config)
