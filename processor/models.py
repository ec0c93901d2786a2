"""Data models for calendar event processing."""
import json
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

SOURCE_NAMES = ('calendar', 'astro', 'shichen', 'jieqi', 'holidays')


@dataclass
class Event:
    """Normalized event emitted by a source processor."""
    date: str = ''
    title: str = ''
    description: str = ''
    is_all_day: bool = False
    start_time: str = ''
    end_time: str = ''
    location: str = ''
    travel_time: str = ''
    repeat: str = ''
    alarm: str = ''
    attachment: str = ''
    url: str = ''
    badge: str = ''
    priority: int = 0

    @property
    def merge_key(self) -> str:
        """Calendar slot identity: the date, plus the start time when timed."""
        if self.start_time:
            return f"{self.date}T{self.start_time.replace(':', '')}"
        return self.date

    @property
    def dedup_key(self) -> str:
        return f"{self.date}-{self.title}"


@dataclass
class MergedEvent:
    """One calendar slot after all contributing events were merged."""
    merge_key: str
    date: str
    title: str
    description: str
    is_all_day: bool
    start_time: str = ''
    location: str = ''
    url: str = ''
    badge: str = ''


# Output key -> attribute name for the flat daily-almanac record
ALMANAC_FIELDS = [
    ('date', 'date'),
    ('hour', 'hour'),
    ('minute', 'minute'),
    ('second', 'second'),
    ('festivals', 'festivals'),
    ('pengzubaiji', 'pengzubaiji'),
    ('liuyao', 'liuyao'),
    ('jiuxing', 'jiuxing'),
    ('taisui', 'taisui'),
    ('zodiac', 'zodiac'),
    ('cnYear', 'cn_year'),
    ('cnMonth', 'cn_month'),
    ('cnDay', 'cn_day'),
    ('cyclicalYear', 'cyclical_year'),
    ('cyclicalMonth', 'cyclical_month'),
    ('cyclicalDay', 'cyclical_day'),
    ('hourLunar', 'hour_lunar'),
    ('maxDayInMonthLunar', 'max_day_in_month_lunar'),
    ('leapMonth', 'leap_month'),
    ('yuexiang', 'yuexiang'),
    ('wuhou', 'wuhou'),
    ('shujiu', 'shujiu'),
    ('sanfu', 'sanfu'),
    ('solarTerms', 'solar_terms'),
    ('yi', 'yi'),
    ('ji', 'ji'),
    ('chong', 'chong'),
    ('sha', 'sha'),
    ('naYin', 'na_yin'),
    ('shiershen', 'shiershen'),
    ('xingxiu', 'xingxiu'),
    ('zheng', 'zheng'),
    ('shou', 'shou'),
    ('jishenfangwei', 'jishenfangwei'),
]


# Inlined keys of the positional-deity mapping
POSITION_KEYS = ('xi', 'fu', 'cai', 'yanggui', 'yingui')


@dataclass
class AlmanacRecord:
    """
    Flat daily-almanac record.

    The positional-deity mapping is kept twice: ``positions`` holds the
    inlined individual entries, ``jishenfangwei`` the same mapping as JSON
    text. ``solar_terms`` is likewise JSON text.
    """
    date: str
    hour: Any = None
    minute: Any = None
    second: Any = None
    festivals: str = ''
    pengzubaiji: str = ''
    liuyao: str = ''
    jiuxing: str = ''
    taisui: str = ''
    zodiac: Any = None
    cn_year: Any = None
    cn_month: Any = None
    cn_day: Any = None
    cyclical_year: Any = None
    cyclical_month: Any = None
    cyclical_day: Any = None
    hour_lunar: Any = None
    max_day_in_month_lunar: Any = None
    leap_month: Any = None
    yuexiang: Any = None
    wuhou: Any = None
    shujiu: Any = None
    sanfu: Any = None
    solar_terms: Optional[str] = None
    yi: Any = None
    ji: Any = None
    chong: Any = None
    sha: Any = None
    na_yin: Any = None
    shiershen: Any = None
    xingxiu: Any = None
    zheng: Any = None
    shou: Any = None
    jishenfangwei: Optional[str] = None
    positions: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Flat mapping with the named fields followed by the inlined positions."""
        record = {key: getattr(self, attr) for key, attr in ALMANAC_FIELDS}
        for key, value in self.positions.items():
            record.setdefault(key, value)
        return record

    @classmethod
    def from_dict(cls, record: Dict[str, Any]) -> 'AlmanacRecord':
        """
        Rebuild a record from its flat mapping.

        Positions are read from ``jishenfangwei`` given as JSON text or as a
        mapping, falling back to the inlined position keys.
        """
        values = {attr: record.get(key) for key, attr in ALMANAC_FIELDS}
        for attr in ('festivals', 'pengzubaiji', 'liuyao', 'jiuxing', 'taisui'):
            if values[attr] is None:
                values[attr] = ''
        values['date'] = values['date'] or ''

        raw = record.get('jishenfangwei')
        if isinstance(raw, str) and raw:
            try:
                raw = json.loads(raw)
            except ValueError:
                raw = None
        if isinstance(raw, dict):
            positions = dict(raw)
            values['jishenfangwei'] = json.dumps(raw, ensure_ascii=False)
        else:
            positions = {key: record[key] for key in POSITION_KEYS if key in record}
            values['jishenfangwei'] = (
                json.dumps(positions, ensure_ascii=False) if positions else None
            )
        return cls(positions=positions, **values)


@dataclass
class BuildResult:
    """Outcome of encoding merged events into a calendar document."""
    ics_text: str
    merged_events: int
    encoded_events: int

    @property
    def skipped_events(self) -> int:
        return self.merged_events - self.encoded_events
