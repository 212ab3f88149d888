"""
HTML rendering of the Year/Month/Day summary forest.

Every Summary becomes a collapsible <details> element whose <summary> line
shows the node's own extrema; readings are plain rows.
"""

from html import escape
from pathlib import Path
from typing import List, Sequence, Union

from ..rollup.engine import Summary, Year
from ..storage.record import Reading

_HEAD = (
    '<!DOCTYPE html><html lang="en"><head><meta charset="UTF-8"><title>{title}</title>'
    '<style>details{{margin-left: 20px;}}summary>div{{display: contents;}}'
    'body{{font-size: 14px;font-family: monospace;}}</style></head><body>'
)
_TAIL = '</body></html>'


def format_temperature(centi_degrees: int) -> str:
    """2650 -> '26.50', -5 -> '-0.05'."""
    sign = '-' if centi_degrees < 0 else ''
    whole, fraction = divmod(abs(centi_degrees), 100)
    return f"{sign}{whole}.{fraction:02d}"


def render_reading(reading: Reading) -> str:
    return (
        f"<div>{escape(reading.timestamp.isoformat())},"
        f"{format_temperature(reading.max_temperature)}℃,"
        f"{format_temperature(reading.min_temperature)}℃,"
        f"{reading.max_humidity}%,{reading.min_humidity}%</div>"
    )


def _render_node(node: Union[Summary, Reading], parts: List[str]):
    if not isinstance(node, Summary):
        parts.append(render_reading(node))
        return

    parts.append('<details><summary>')
    parts.append(render_reading(node.summary))
    parts.append('</summary>')
    for child in node.details:
        _render_node(child, parts)
    parts.append('</details>')


def render_report(years: Sequence[Year], title: str = "Sensor history") -> str:
    """Render the whole forest as one HTML document."""
    parts = [_HEAD.format(title=escape(title))]
    for year in years:
        _render_node(year, parts)
    parts.append(_TAIL)
    return ''.join(parts)


def write_report(years: Sequence[Year], path: Union[str, Path], title: str = "Sensor history") -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(render_report(years, title), encoding='utf-8')
    return path
