"""Report export: JSON, Markdown, CSV and JUnit renderings of a scan result."""

import csv
import io
import json
import xml.etree.ElementTree as ET
from typing import Union

from sqlscanner.core.models import ScanResult, SmartScanResult

REPORT_FORMATS = ("json", "md", "csv", "junit")

CSV_HEADER = ["technique", "point_kind", "point_name", "vulnerable", "status",
              "elapsed_ms", "body_length", "confirmations", "reproduce_curl", "remediation"]


def _flatten(result: Union[ScanResult, SmartScanResult]) -> ScanResult:
    if isinstance(result, SmartScanResult):
        return result.merged()
    return result


def to_json_report(result: Union[ScanResult, SmartScanResult]) -> str:
    return json.dumps(_flatten(result).to_dict(), indent=2)


def to_markdown_report(result: Union[ScanResult, SmartScanResult]) -> str:
    result = _flatten(result)
    lines = ["# SQLi Scan Report", "",
             f"Status: {'VULNERABLE' if result.vulnerable else 'OK'}", ""]
    vulns = result.findings()
    if not vulns:
        lines.append("No confirmed findings.")
        return "\n".join(lines)

    lines += [f"Findings: {len(vulns)}", ""]
    for i, d in enumerate(vulns, 1):
        meta = d.response_meta
        lines.append(f"## {i}. {d.technique.value} @ {d.point}")
        if d.confirmations:
            lines.append(f"- confirmations: {', '.join(d.confirmations)}")
        lines.append(f"- payload: `{d.payload}`")
        lines.append(f"- status: {meta.status}")
        lines.append(f"- elapsed_ms: {meta.elapsed_ms}")
        lines.append(f"- body_length: {meta.body_length}")
        if d.evidence:
            lines.append(f"- evidence: {d.evidence}")
        if d.reproduce:
            lines.append("- reproduce:")
            lines += [f"  - curl: `{c}`" for c in d.reproduce]
        if d.remediation:
            lines.append("- remediation:")
            lines += [f"  - {r}" for r in d.remediation]
        lines.append("")
    return "\n".join(lines)


def to_csv_report(result: Union[ScanResult, SmartScanResult]) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    for d in _flatten(result).details:
        meta = d.response_meta
        writer.writerow([
            d.technique.value,
            d.point.kind.value,
            d.point.name,
            str(d.vulnerable).lower(),
            meta.status,
            meta.elapsed_ms,
            meta.body_length,
            "; ".join(d.confirmations),
            " | ".join(d.reproduce),
            " | ".join(d.remediation),
        ])
    return buf.getvalue()


def to_junit_report(result: Union[ScanResult, SmartScanResult]) -> str:
    result = _flatten(result)
    details = result.details
    total_s = sum(d.response_meta.elapsed_ms for d in details) / 1000

    suite = ET.Element("testsuite", {
        "name": "sqlscanner",
        "tests": str(max(1, len(details))),
        "failures": str(len(result.findings())),
        "time": f"{total_s:.3f}",
    })
    if not details:
        ET.SubElement(suite, "testcase", {"classname": "scan", "name": "no_targets"})

    for d in details:
        case = ET.SubElement(suite, "testcase", {
            "classname": f"scan.{d.point.kind.value}",
            "name": f"{d.technique.value} {d.point}",
            "time": f"{d.response_meta.elapsed_ms / 1000:.3f}",
        })
        if not d.vulnerable:
            continue
        parts = [d.evidence]
        if d.reproduce:
            parts.append("curl:\n" + "\n".join(d.reproduce))
        if d.remediation:
            parts.append("fix:\n" + "\n".join(d.remediation))
        failure = ET.SubElement(case, "failure", {
            "message": ", ".join(d.confirmations) or "vulnerability",
        })
        failure.text = "\n\n".join(p for p in parts if p)

    body = ET.tostring(suite, encoding="unicode")
    return f'<?xml version="1.0" encoding="UTF-8"?>\n{body}'


def render_report(result: Union[ScanResult, SmartScanResult], fmt: str = "json") -> str:
    renderers = {
        "json": to_json_report,
        "md": to_markdown_report,
        "csv": to_csv_report,
        "junit": to_junit_report,
    }
    if fmt not in renderers:
        raise ValueError(f"unknown report format {fmt!r}; expected one of {', '.join(REPORT_FORMATS)}")
    return renderers[fmt](result)
