"""Export of finished analyses as JSON or CSV."""

from __future__ import annotations

import csv
import io
import json
from enum import Enum
from typing import Any, List

from competitoragents.providers.models import CanonicalField

from .models import AnalysisSession

LIST_SEPARATOR = "; "


class ExportFormat(str, Enum):
    JSON = "json"
    CSV = "csv"

    @property
    def media_type(self) -> str:
        return "application/json" if self is ExportFormat.JSON else "text/csv"


def _cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        return LIST_SEPARATOR.join(str(item) for item in value)
    if isinstance(value, dict):
        return json.dumps(value, sort_keys=True)
    return str(value)


def export_json(session: AnalysisSession) -> str:
    """Full session document including every provider result."""
    return json.dumps(session.to_dict(include_provider_results=True), indent=2, default=str)


def export_csv(session: AnalysisSession) -> str:
    """One row per target with every canonical field as a column.

    List fields are joined with ``"; "``. Targets without an aggregated
    result are written with empty fields.
    """
    columns: List[str] = [field.value for field in CanonicalField]
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(
        ["target", "data_quality_score", "providers_used", "providers_failed", *columns]
    )
    for target in session.targets:
        aggregated = session.per_target_results.get(target)
        if aggregated is None:
            writer.writerow([target, "", "", "", *([""] * len(columns))])
            continue
        writer.writerow(
            [
                target,
                f"{aggregated.data_quality_score:.4f}",
                _cell(aggregated.providers_used),
                _cell(aggregated.providers_failed),
                *(_cell(aggregated.fields.get(column)) for column in columns),
            ]
        )
    return output.getvalue()


def export_session(session: AnalysisSession, fmt: ExportFormat) -> str:
    if fmt is ExportFormat.CSV:
        return export_csv(session)
    return export_json(session)
