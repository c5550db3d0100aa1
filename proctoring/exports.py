import csv
import html
import io
from typing import List

from .schemas import ReportResponse


def format_duration(ms: int) -> str:
    s = max(0, round(ms / 1000))
    hh, rem = divmod(s, 3600)
    mm, ss = divmod(rem, 60)
    if hh:
        return f"{hh}h {mm}m {ss}s"
    if mm:
        return f"{mm}m {ss}s"
    return f"{ss}s"


def _iso(value) -> str:
    return value.isoformat() if value else ""


def build_csv_report_content(report: ReportResponse) -> str:
    s = report.session
    rows: List[list] = [
        ["Section", "Field", "Value"],
        ["Meta", "Session ID", s.id],
        ["Meta", "Candidate", s.candidate_name or ""],
        ["Meta", "Started At", _iso(s.start_time)],
        ["Meta", "Ended At", _iso(s.end_time)],
        ["Meta", "Duration", format_duration(s.duration_ms)],
        [],
        ["Score", "Final Score", report.integrity.score],
        ["Flags", "Phone shown", "Yes" if report.phone_detected else "No"],
        ["Flags", "Multiple faces", "Yes" if report.multiple_faces else "No"],
        [],
        ["Deductions", "Type", "Times", "Deduction"],
    ]
    for row in report.integrity.breakdown:
        rows.append(["Deductions", row.type, row.count, f"-{row.deduction}"])

    rows.append([])
    rows.append(["Event Counts", "Type", "Count"])
    for event_type, count in sorted(report.counts.items()):
        rows.append(["Event Counts", event_type, count])

    rows.append([])
    rows.append([f"Timeline (first {report.sample_limit})", "offset (ms)", "type", "confidence"])
    for e in report.event_sample:
        rows.append(["Timeline", e.offset_ms, e.event_type, "" if e.confidence is None else e.confidence])

    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\r\n")
    writer.writerows(rows)
    # BOM so spreadsheet apps pick UTF-8
    return "\ufeff" + buf.getvalue()


def build_html_report_content(report: ReportResponse) -> str:
    s = report.session
    esc = html.escape

    deductions = "".join(
        f"<tr><td>{esc(row.type)}</td><td>{row.count}</td><td>-{row.deduction}</td></tr>"
        for row in report.integrity.breakdown
    ) or "<tr><td colspan='3'>No deductions</td></tr>"
    counts = "".join(
        f"<li>{esc(event_type)}: {count}</li>" for event_type, count in sorted(report.counts.items())
    ) or "<li>No events</li>"
    timeline = "".join(
        f"<tr><td>{e.offset_ms}</td><td>{esc(e.event_type)}</td>"
        f"<td>{'' if e.confidence is None else f'{e.confidence:.2f}'}</td></tr>"
        for e in report.event_sample
    )

    return f"""
    <!doctype html>
    <html>
    <head>
        <meta charset='utf-8' />
        <title>Proctoring Report</title>
        <style>
            body {{ font-family: Arial, sans-serif; padding: 24px; }}
            h1 {{ margin-top: 0; }}
            .grid {{ display: grid; grid-template-columns: 240px 1fr; gap: 8px 16px; }}
            .card {{ border: 1px solid #e5e7eb; border-radius: 8px; padding: 16px; margin-top: 16px; }}
            table {{ border-collapse: collapse; }}
            td, th {{ padding: 4px 12px; border-bottom: 1px solid #eee; text-align: left; }}
        </style>
    </head>
    <body>
        <h1>Proctoring Report</h1>
        <div class='grid'>
            <div><strong>Candidate Name</strong></div><div>{esc(s.candidate_name or '')}</div>
            <div><strong>Session ID</strong></div><div>{esc(s.id)}</div>
            <div><strong>Start Time</strong></div><div>{_iso(s.start_time)}</div>
            <div><strong>End Time</strong></div><div>{_iso(s.end_time)}</div>
            <div><strong>Duration</strong></div><div>{format_duration(s.duration_ms)}</div>
            <div><strong>Integrity Score</strong></div><div>{report.integrity.score}</div>
            <div><strong>Phone shown</strong></div><div>{'Yes' if report.phone_detected else 'No'}</div>
            <div><strong>Multiple faces</strong></div><div>{'Yes' if report.multiple_faces else 'No'}</div>
        </div>

        <div class='card'>
            <h3>Deductions</h3>
            <table>
                <tr><th>Type</th><th>Times</th><th>Deduction</th></tr>
                {deductions}
            </table>
        </div>

        <div class='card'>
            <h3>Event Summary</h3>
            <ul>{counts}</ul>
        </div>

        <div class='card'>
            <h3>Timeline (first {report.sample_limit})</h3>
            <table>
                <tr><th>Offset (ms)</th><th>Type</th><th>Confidence</th></tr>
                {timeline}
            </table>
        </div>
    </body>
    </html>
    """
