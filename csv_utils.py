import csv
import re
from decimal import ROUND_HALF_UP, Decimal
from io import StringIO

from schemas import ScenarioSnapshot

SNAPSHOT_HEADER = [
    "Kategori",
    "Planned baseline",
    "Penyesuaian",
    "Planned simulasi",
    "Projected EOM",
]


def sanitize_csv_value(value: str) -> str:
    """
    Sanitize CSV values to prevent formula injection by prefixing dangerous patterns with tab.
    """
    if not value or value.strip() == "":
        return ""

    value = value.strip()

    formula_triggers = ("=", "+", "-", "@", "\t", "\r")

    if value.startswith(formula_triggers):
        return "\t" + value

    dangerous_patterns = [
        r"^cmd\s*",
        r"^powershell\s*",
        r"^bash\s*",
        r"^sh\s*",
        r"^\.",
        r"^http[s]?://",
    ]

    for pattern in dangerous_patterns:
        if re.match(pattern, value, re.IGNORECASE):
            return "\t" + value

    return value


def _rupiah(value: Decimal) -> str:
    return str(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def export_snapshot(snapshot: ScenarioSnapshot) -> str:
    output = StringIO()
    writer = csv.writer(output)
    writer.writerow(SNAPSHOT_HEADER)
    for category in snapshot.categories:
        writer.writerow(
            [
                sanitize_csv_value(category.name),
                _rupiah(category.baseline_planned),
                _rupiah(category.scenario_planned - category.baseline_planned),
                _rupiah(category.scenario_planned),
                _rupiah(category.projected),
            ]
        )
    return output.getvalue()
