"""Reshaping of raw source documents into Reconstruction envelopes."""
import json
import logging
from typing import Any, Dict, List

from processor.models import AlmanacRecord

logger = logging.getLogger(__name__)

ENVELOPE_KEYS = ('errno', 'errmsg', 'data')


def _join_list(value: Any) -> str:
    if not value:
        return ''
    if isinstance(value, (list, tuple)):
        return ','.join(str(item) for item in value)
    return str(value)


def _to_json(value: Any):
    if value is None:
        return None
    return json.dumps(value, ensure_ascii=False)


def flatten_calendar_data(document: Any, date_str: str) -> Dict[str, Any]:
    """
    Flatten one daily-almanac API response into a single flat record.

    Args:
        document: Raw response ``{errno, errmsg, data: {...}}``
        date_str: Date key for the result

    Returns:
        ``{date_str: {"Reconstruction": [{errno, errmsg, data: [record]}]}}``,
        or an empty dict when the document has no ``data.date``
    """
    if not isinstance(document, dict):
        return {}
    raw = document.get('data')
    if not isinstance(raw, dict) or not raw.get('date'):
        return {}

    lunar = raw.get('lunar') if isinstance(raw.get('lunar'), dict) else {}
    almanac = raw.get('almanac') if isinstance(raw.get('almanac'), dict) else {}
    positions = almanac.get('jishenfangwei')
    if not isinstance(positions, dict):
        positions = {}

    merged = {
        key: value for key, value in raw.items()
        if key not in ('lunar', 'almanac', 'festivals')
    }
    merged.update(lunar)
    merged.update(almanac)
    merged.update(positions)
    merged.pop('jishenfangwei', None)

    record = AlmanacRecord(
        date=raw.get('date') or date_str,
        hour=raw.get('hour'),
        minute=raw.get('minute'),
        second=raw.get('second'),
        festivals=_join_list(raw.get('festivals')),
        pengzubaiji=_join_list(almanac.get('pengzubaiji')),
        liuyao=almanac.get('liuyao') or '',
        jiuxing=almanac.get('jiuxing') or '',
        taisui=almanac.get('taisui') or '',
        zodiac=merged.get('zodiac'),
        cn_year=merged.get('cnYear'),
        cn_month=merged.get('cnMonth'),
        cn_day=merged.get('cnDay'),
        cyclical_year=merged.get('cyclicalYear'),
        cyclical_month=merged.get('cyclicalMonth'),
        cyclical_day=merged.get('cyclicalDay'),
        hour_lunar=merged.get('hour'),
        max_day_in_month_lunar=merged.get('maxDayInMonth'),
        leap_month=merged.get('leapMonth'),
        yuexiang=merged.get('yuexiang'),
        wuhou=merged.get('wuhou'),
        shujiu=merged.get('shujiu'),
        sanfu=merged.get('sanfu'),
        solar_terms=_to_json(merged.get('solarTerms')),
        yi=merged.get('yi'),
        ji=merged.get('ji'),
        chong=merged.get('chong'),
        sha=merged.get('sha'),
        na_yin=merged.get('nayin'),
        shiershen=merged.get('shiershen'),
        xingxiu=merged.get('xingxiu'),
        zheng=merged.get('zheng'),
        shou=merged.get('shou'),
        jishenfangwei=_to_json(almanac.get('jishenfangwei')),
        positions=dict(positions),
    )

    return {
        date_str: {
            'Reconstruction': [
                {
                    'errno': document.get('errno'),
                    'errmsg': document.get('errmsg'),
                    'data': [record.to_dict()],
                }
            ]
        }
    }


def wrap_reconstruction(document: Any, date_str: str) -> Dict[str, Any]:
    """Wrap a source document unchanged in the Reconstruction envelope."""
    if not isinstance(document, dict) or not document:
        return {}

    if any(key in document for key in ENVELOPE_KEYS):
        errno = document.get('errno')
        errmsg = document.get('errmsg')
        data = document.get('data')
    else:
        # Bare payloads such as the holidays mapping
        errno, errmsg, data = 0, '', document

    return {
        date_str: {
            'Reconstruction': [
                {'errno': errno, 'errmsg': errmsg, 'data': data}
            ]
        }
    }


def reshape_documents(
    raw_documents: Dict[str, Any], date_str: str
) -> Dict[str, Dict[str, Any]]:
    """
    Reshape freshly fetched documents for storage.

    The ``calendar`` source is flattened; all other sources are wrapped.
    """
    reshaped = {}
    for source, document in raw_documents.items():
        if source == 'calendar':
            reshaped[source] = flatten_calendar_data(document, date_str)
        else:
            reshaped[source] = wrap_reconstruction(document, date_str)
        if not reshaped[source]:
            logger.warning(f"No usable {source} data for {date_str}")
    return reshaped


def iter_payloads(document: Any) -> List[Any]:
    """
    Unwrap a stored source document into its payloads.

    Accepts the stored ``{date: {"Reconstruction": [...]}}`` mapping as well
    as a bare API envelope ``{errno, errmsg, data}``. Dates are visited in
    sorted order so the result is stable across runs.
    """
    if not isinstance(document, dict):
        return []
    if 'data' in document and 'Reconstruction' not in document:
        return [document['data']]

    payloads = []
    for date_key in sorted(document):
        entry = document[date_key]
        if not isinstance(entry, dict):
            continue
        for envelope in entry.get('Reconstruction') or []:
            if isinstance(envelope, dict) and 'data' in envelope:
                payloads.append(envelope['data'])
            elif envelope:
                payloads.append(envelope)
    return payloads
