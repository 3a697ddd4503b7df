"""
Report Export - Renders an analysis result as JSON, CSV or SRT markers
"""

from datetime import datetime, timezone
from typing import Optional

from analyzer import AnalysisResult, HIGH_RISK_SEVERITIES

CSV_HEADER = "Category,Start Time (s),End Time (s),Duration (s),Severity,Confidence (%),Evidence,Source"

EXPORT_FORMATS = ("json", "csv", "srt")

EXPORT_MEDIA_TYPES = {
    "json": "application/json",
    "csv": "text/csv",
    "srt": "text/plain",
}


def _percent(value: float) -> int:
    return int(value * 100 + 0.5)


def format_srt_time(seconds: float) -> str:
    """Format seconds as an SRT timestamp (HH:MM:SS,mmm)"""
    hours = int(seconds // 3600)
    minutes = int((seconds % 3600) // 60)
    secs = int(seconds % 60)
    ms = int((seconds % 1) * 1000)
    return f"{hours:02d}:{minutes:02d}:{secs:02d},{ms:03d}"


def export_json(result: AnalysisResult, generated_at: Optional[datetime] = None) -> dict:
    """Structured summary of the analysis"""
    generated_at = generated_at or datetime.now(timezone.utc)
    events = result.events

    average_confidence = _percent(sum(e.confidence for e in events) / len(events)) if events else 0

    return {
        "video_id": result.video_id,
        "generated_at": generated_at.isoformat(),
        "risk_score": result.risk_score,
        "risk_level": result.risk_level,
        "total_events": len(events),
        "events": [
            {
                "category": e.category.name,
                "start_time": e.start_time,
                "end_time": e.end_time,
                "duration": e.duration,
                "severity": e.severity,
                "confidence": _percent(e.confidence),
                "evidence": e.evidence,
                "source": e.source,
            }
            for e in events
        ],
        "summary": {
            "categories_detected": result.summary["categories_detected"],
            "high_risk_events": sum(1 for e in events if e.severity in HIGH_RISK_SEVERITIES),
            "average_confidence": average_confidence,
        },
    }


def export_csv(result: AnalysisResult) -> str:
    """One row per event, evidence quoted with inner quotes doubled"""
    rows = [CSV_HEADER]
    for e in result.events:
        evidence = e.evidence.replace('"', '""')
        rows.append(",".join([
            e.category.name,
            f"{e.start_time:.2f}",
            f"{e.end_time:.2f}",
            f"{e.duration:.2f}",
            e.severity,
            str(_percent(e.confidence)),
            f'"{evidence}"',
            e.source,
        ]))
    return "\n".join(rows)


def export_srt(result: AnalysisResult) -> str:
    """One subtitle marker per event spanning its time range"""
    blocks = []
    for index, e in enumerate(result.events, start=1):
        blocks.append(
            f"{index}\n"
            f"{format_srt_time(e.start_time)} --> {format_srt_time(e.end_time)}\n"
            f"[{e.category.icon} {e.category.name}] {e.evidence}\n\n"
        )
    return "".join(blocks)


def export_report(result: AnalysisResult, fmt: str):
    """Dispatch on export format. Returns a dict for json, text otherwise."""
    fmt = (fmt or "").lower()
    if fmt == "json":
        return export_json(result)
    if fmt == "csv":
        return export_csv(result)
    if fmt == "srt":
        return export_srt(result)
    raise ValueError(f"Unsupported format '{fmt}'. Use: {', '.join(EXPORT_FORMATS)}")


def export_filename(video_id: str, fmt: str) -> str:
    fmt = fmt.lower()
    if fmt == "srt":
        return f"brand-safety-markers-{video_id}.srt"
    return f"brand-safety-report-{video_id}.{fmt}"
