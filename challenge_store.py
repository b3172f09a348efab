"""
Challenge storage for the Where On Earth daily challenge bot.
"""
import json
import logging
import os
import threading
from dataclasses import asdict, dataclass, field, fields
from enum import Enum
from typing import Dict, List, Optional

from errors import ConfigurationMissing

logger = logging.getLogger(__name__)

DEFAULT_TABLE_NAME = "DailyChallenge"

# Partitions inside a table, one per record type
CHALLENGE_PARTITION = "DailyChallenge"
IMAGE_PARTITION = "DailyChallengeImage"
INFO_PARTITION = "DailyChallengeInfo"
TEAM_PARTITION = "DailyChallengeTeam"


class ImageSource(str, Enum):
    BING = "Bing"
    GOOGLE = "Google"


class ChallengeStatus(str, Enum):
    AWAITING_IMAGE = "AwaitingImage"
    GUESSING = "Guessing"
    RESOLVED = "Resolved"


def _known_fields(cls, data: Optional[Dict]) -> Dict:
    """Keep only keys the record type knows about; absent keys fall back to defaults."""
    names = {f.name for f in fields(cls)}
    return {key: value for key, value in (data or {}).items() if key in names}


@dataclass
class DailyChallenge:
    """Today's challenge for a team."""
    photo_url: Optional[str] = None
    text: Optional[str] = None
    latitude: float = 0.0
    longitude: float = 0.0
    extracted_location: Optional[str] = None
    entries: List[Dict] = field(default_factory=list)
    published_time: Optional[str] = None
    current_status: ChallengeStatus = ChallengeStatus.AWAITING_IMAGE
    winner_name: Optional[str] = None
    winner_guess: Optional[str] = None
    distance_to_entry: float = 0.0

    @property
    def result_set(self) -> bool:
        return self.current_status == ChallengeStatus.RESOLVED

    def to_dict(self) -> Dict:
        data = asdict(self)
        data['current_status'] = self.current_status.value
        return data

    @classmethod
    def from_dict(cls, data: Optional[Dict]) -> "DailyChallenge":
        values = _known_fields(cls, data)
        status = values.get('current_status')
        if not status:
            status = (ChallengeStatus.GUESSING.value if values.get('photo_url')
                      else ChallengeStatus.AWAITING_IMAGE.value)
        # Older rows flagged resolution separately from the status
        if (data or {}).get('result_set'):
            status = ChallengeStatus.RESOLVED.value
        values['current_status'] = ChallengeStatus(status)
        values['entries'] = list(values.get('entries') or [])
        # Stored nulls read back as zero-values, like absent keys
        for name in ('latitude', 'longitude', 'distance_to_entry'):
            values[name] = float(values.get(name) or 0.0)
        return cls(**values)


@dataclass
class DailyChallengeImage:
    """The candidate image currently offered to a team."""
    url: Optional[str] = None
    image_region: Optional[str] = None
    image_text: Optional[str] = None
    image_source: ImageSource = ImageSource.BING

    def to_dict(self) -> Dict:
        data = asdict(self)
        data['image_source'] = self.image_source.value
        return data

    @classmethod
    def from_dict(cls, data: Optional[Dict]) -> "DailyChallengeImage":
        values = _known_fields(cls, data)
        values['image_source'] = ImageSource(values.get('image_source') or ImageSource.BING.value)
        return cls(**values)


@dataclass
class DailyChallengeInfo:
    """Which provider a team is browsing and where its cursor is."""
    current_source: ImageSource = ImageSource.BING
    current_image_index: int = 0

    def to_dict(self) -> Dict:
        return {
            'current_source': self.current_source.value,
            'current_image_index': self.current_image_index
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict]) -> "DailyChallengeInfo":
        values = _known_fields(cls, data)
        values['current_source'] = ImageSource(values.get('current_source') or ImageSource.BING.value)
        values['current_image_index'] = int(values.get('current_image_index') or 0)
        return cls(**values)


@dataclass
class DailyChallengeTeam:
    """Delivery coordinates used to reach a team outside of a user turn."""
    service_url: Optional[str] = None
    team_id: Optional[str] = None
    team_name: Optional[str] = None
    tenant_id: Optional[str] = None
    channel_id: Optional[str] = None
    bot_id: Optional[str] = None
    installer_name: str = "Automatic"

    @property
    def is_registered(self) -> bool:
        return bool(self.team_id)

    def to_dict(self) -> Dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[Dict]) -> "DailyChallengeTeam":
        return cls(**_known_fields(cls, data))


class ChallengeStore:
    """Stores the daily challenge records of every team in a JSON table file.

    The file holds one document per table name; each table is split into
    partitions (one per record type) whose rows are keyed by team key.
    The file is re-read on every lookup so separate processes (the bot and
    the trigger endpoint) always observe each other's writes.
    """

    def __init__(self, connection_string: Optional[str], table_name: str = DEFAULT_TABLE_NAME):
        self.connection_string = connection_string
        self.table_name = table_name or DEFAULT_TABLE_NAME
        self._lock = threading.Lock()

    @property
    def is_configured(self) -> bool:
        return bool(self.connection_string)

    def _ensure_configured(self):
        if not self.is_configured:
            raise ConfigurationMissing(
                "Storage connection string is not configured. To continue, add "
                "'storage.connection_string' to the config.yml file."
            )

    def _load_tables(self, strict: bool = False) -> Dict:
        """Read every table from the file.

        A missing file is an empty store. An unreadable file is logged and
        read as empty, unless strict is set, in which case the error is
        raised so a write never replaces rows it could not read.
        """
        if not os.path.exists(self.connection_string):
            return {}
        try:
            with open(self.connection_string, 'r') as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            logger.error(f"Error loading challenge table {self.connection_string}: {e}")
            if strict:
                raise
            return {}

    def _read(self, partition: str, team_key: str) -> Optional[Dict]:
        self._ensure_configured()
        with self._lock:
            table = self._load_tables().get(self.table_name, {})
        return table.get(partition, {}).get(str(team_key))

    def _write(self, partition: str, team_key: str, row: Dict):
        self._ensure_configured()
        with self._lock:
            tables = self._load_tables(strict=True)
            table = tables.setdefault(self.table_name, {})
            table.setdefault(partition, {})[str(team_key)] = row
            tmp_file = f"{self.connection_string}.tmp"
            with open(tmp_file, 'w') as f:
                json.dump(tables, f, indent=2)
            os.replace(tmp_file, self.connection_string)

    def get_daily_challenge(self, team_key: str) -> DailyChallenge:
        return DailyChallenge.from_dict(self._read(CHALLENGE_PARTITION, team_key))

    def save_daily_challenge(self, team_key: str, challenge: DailyChallenge):
        self._write(CHALLENGE_PARTITION, team_key, challenge.to_dict())

    def get_daily_challenge_image(self, team_key: str) -> DailyChallengeImage:
        return DailyChallengeImage.from_dict(self._read(IMAGE_PARTITION, team_key))

    def save_daily_challenge_image(self, team_key: str, image: DailyChallengeImage):
        self._write(IMAGE_PARTITION, team_key, image.to_dict())

    def get_latest_info(self, team_key: str) -> DailyChallengeInfo:
        return DailyChallengeInfo.from_dict(self._read(INFO_PARTITION, team_key))

    def save_latest_info(self, team_key: str, info: DailyChallengeInfo):
        self._write(INFO_PARTITION, team_key, info.to_dict())

    def get_team_info(self, team_key: str) -> DailyChallengeTeam:
        return DailyChallengeTeam.from_dict(self._read(TEAM_PARTITION, team_key))

    def save_team_info(self, team_key: str, team: DailyChallengeTeam):
        """Register a team, merging with any existing registration.

        Fields already stored are kept when the new record leaves them empty,
        so registering the same team again never loses its coordinates.
        """
        existing = self.get_team_info(team_key).to_dict()
        merged = {key: value if value is not None else existing.get(key)
                  for key, value in team.to_dict().items()}
        self._write(TEAM_PARTITION, team_key, merged)

    def get_all_teams(self) -> Dict[str, DailyChallengeTeam]:
        """Get every registered team, keyed by team key."""
        self._ensure_configured()
        with self._lock:
            rows = self._load_tables().get(self.table_name, {}).get(TEAM_PARTITION, {})
        return {team_key: DailyChallengeTeam.from_dict(row) for team_key, row in rows.items()}
