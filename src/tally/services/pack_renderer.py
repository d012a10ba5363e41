"""Pack content and PDF rendering.

Pack lines are plain text; redaction is applied line by line before the
lines are wrapped and paged into a PDF. Rendering is deterministic: the
same inputs always produce the same bytes.
"""

from __future__ import annotations

import re
import textwrap
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Sequence

_NAME_PART = r"[A-Za-z'’-]*[a-z][A-Za-z'’-]*"
_NAME_PATTERN = re.compile(
    rf"\b(Employee|Payee|Name)(:)?\s+({_NAME_PART}(?:\s+{_NAME_PART})+)\b"
)
_BANK_PATTERN = re.compile(r"\b(?:\d[ -]?){7,}\d\b")
_NI_PATTERN = re.compile(r"\b[A-CEGHJ-PR-TW-Z]{2}\d{6}[A-D]\b", re.IGNORECASE)


@dataclass(frozen=True)
class RedactionSettings:
    """Which classes of personal data are masked in packs."""

    mask_employee_names: bool = False
    mask_bank_details: bool = False
    mask_ni_numbers: bool = False

    @classmethod
    def from_defaults(cls, firm_defaults: Any) -> RedactionSettings:
        """Read the ``redaction`` block of firm defaults; only ``True`` enables a mask."""
        if not isinstance(firm_defaults, dict):
            return cls()
        redaction = firm_defaults.get("redaction")
        if not isinstance(redaction, dict):
            return cls()
        return cls(
            mask_employee_names=redaction.get("maskEmployeeNames") is True,
            mask_bank_details=redaction.get("maskBankDetails") is True,
            mask_ni_numbers=redaction.get("maskNiNumbers") is True,
        )

    @property
    def enabled(self) -> bool:
        return self.mask_employee_names or self.mask_bank_details or self.mask_ni_numbers

    def to_dict(self) -> dict[str, bool]:
        return {
            "maskEmployeeNames": self.mask_employee_names,
            "maskBankDetails": self.mask_bank_details,
            "maskNiNumbers": self.mask_ni_numbers,
        }


def mask_trailing(value: str, visible: int) -> str:
    if len(value) <= visible:
        return value
    return "*" * (len(value) - visible) + value[-visible:]


def mask_digits(value: str, visible: int) -> str:
    """Mask all but the last ``visible`` digits, keeping separators in place."""
    digits = [c for c in value if c.isdigit()]
    if len(digits) <= visible:
        return value
    masked = iter("*" * (len(digits) - visible) + "".join(digits[-visible:]))
    return "".join(next(masked) if c.isdigit() else c for c in value)


def mask_employee_names(text: str) -> str:
    def replace(match: re.Match[str]) -> str:
        label, colon, names = match.group(1), match.group(2) or "", match.group(3)
        masked = " ".join(
            part if len(part) <= 1 else part[0] + "*" * (len(part) - 1)
            for part in names.split()
        )
        return f"{label}{colon} {masked}"

    return _NAME_PATTERN.sub(replace, text)


def mask_bank_details(text: str) -> str:
    return _BANK_PATTERN.sub(lambda m: mask_digits(m.group(0), 4), text)


def mask_ni_numbers(text: str) -> str:
    return _NI_PATTERN.sub(lambda m: mask_trailing(m.group(0), 2), text)


def redact_line(line: str, redaction: RedactionSettings) -> str:
    if redaction.mask_employee_names:
        line = mask_employee_names(line)
    if redaction.mask_bank_details:
        line = mask_bank_details(line)
    if redaction.mask_ni_numbers:
        line = mask_ni_numbers(line)
    return line


@dataclass(frozen=True)
class PackImportLine:
    source_type: str
    version: int
    file_hash_sha256: str
    mapping_template_version_id: Any = None


@dataclass(frozen=True)
class PackCheckLine:
    check_type: str
    status: str
    severity: str
    delta_value: int | None = None


@dataclass(frozen=True)
class PackExceptionLine:
    title: str
    status: str
    severity: str
    row_numbers: tuple[int, ...] = ()
    resolution_note: str | None = None


@dataclass(frozen=True)
class PackContent:
    """Everything printed in a pack."""

    client_name: str
    period_label: str
    revision: int
    pack_version: int
    run_number: int
    bundle_id: str
    bundle_version: str
    generated_by: str
    redaction: RedactionSettings
    approved_by: str | None = None
    approved_at: datetime | None = None
    imports: Sequence[PackImportLine] = field(default_factory=tuple)
    checks: Sequence[PackCheckLine] = field(default_factory=tuple)
    exceptions: Sequence[PackExceptionLine] = field(default_factory=tuple)


def _format_cents(cents: int) -> str:
    sign = "-" if cents < 0 else ""
    whole, part = divmod(abs(cents), 100)
    return f"{sign}{whole}.{part:02d}"


def _masked(flag: bool) -> str:
    return "masked" if flag else "visible"


def build_pack_lines(content: PackContent) -> list[str]:
    """Lay out the pack as text lines, redacted per the firm's settings."""
    redaction = content.redaction
    lines = [
        "Tally Reconciliation Pack",
        f"Client: {content.client_name}",
        f"Period: {content.period_label}",
        f"Revision: {content.revision}",
        f"Pack version: v{content.pack_version}",
        f"Reconciliation run: #{content.run_number} ({content.bundle_id} {content.bundle_version})",
        f"Generated by: {content.generated_by}",
    ]
    if content.approved_by:
        approved_at = content.approved_at.isoformat() if content.approved_at else "unknown"
        lines.append(f"Approved by: {content.approved_by} at {approved_at}")
    lines.append(
        f"Redaction: names {_masked(redaction.mask_employee_names)}, "
        f"bank {_masked(redaction.mask_bank_details)}, "
        f"NI {_masked(redaction.mask_ni_numbers)}"
    )

    lines += ["", "Imports:"]
    if not content.imports:
        lines.append("- None")
    for entry in content.imports:
        template = "template applied" if entry.mapping_template_version_id else "template missing"
        lines.append(
            f"- {entry.source_type} v{entry.version} hash {entry.file_hash_sha256} ({template})"
        )

    lines += ["", "Checks:"]
    if not content.checks:
        lines.append("- None")
    for check in content.checks:
        delta = f" delta {_format_cents(check.delta_value)}" if check.delta_value is not None else ""
        lines.append(f"- {check.check_type} {check.status} {check.severity}{delta}")

    lines += ["", "Exceptions:"]
    if not content.exceptions:
        lines.append("- None")
    for exception in content.exceptions:
        rows = f" rows {', '.join(str(r) for r in exception.row_numbers)}" if exception.row_numbers else ""
        lines.append(f"- {exception.severity} {exception.status} {exception.title}{rows}")
        if exception.resolution_note:
            lines.append(f"  Note: {exception.resolution_note}")

    if redaction.enabled:
        return [redact_line(line, redaction) for line in lines]
    return lines


_PAGE_WIDTH = 612
_PAGE_HEIGHT = 792
_MARGIN = 50
_FONT_SIZE = 9
_LEADING = 12
_WRAP_WIDTH = 80
_LINES_PER_PAGE = (_PAGE_HEIGHT - 2 * _MARGIN) // _LEADING + 1


def wrap_lines(lines: Sequence[str], width: int = _WRAP_WIDTH) -> list[str]:
    """Break lines longer than ``width``; continuation lines are indented."""
    wrapped: list[str] = []
    for line in lines:
        if len(line) <= width:
            wrapped.append(line)
            continue
        indent = " " * (len(line) - len(line.lstrip()) + 4)
        wrapped += textwrap.wrap(
            line,
            width=width,
            subsequent_indent=indent,
            break_on_hyphens=False,
        )
    return wrapped


def paginate(lines: Sequence[str]) -> list[list[str]]:
    """Split wrapped lines into pages; an empty document still has one page."""
    lines = wrap_lines(lines)
    pages = [
        lines[start : start + _LINES_PER_PAGE]
        for start in range(0, len(lines), _LINES_PER_PAGE)
    ]
    return pages or [[]]


def _encode(text: str) -> bytes:
    # WinAnsi covers Latin-1 plus typographic quotes; anything else becomes "?"
    raw = text.encode("cp1252", errors="replace")
    return raw.replace(b"\\", b"\\\\").replace(b"(", b"\\(").replace(b")", b"\\)")


def _page_stream(lines: Sequence[str]) -> bytes:
    top = _PAGE_HEIGHT - _MARGIN
    stream = [b"BT", b"/F1 %d Tf" % _FONT_SIZE, b"%d %d Td" % (_MARGIN, top)]
    for index, line in enumerate(lines):
        if index:
            stream.append(b"0 -%d Td" % _LEADING)
        stream.append(b"(" + _encode(line) + b") Tj")
    stream.append(b"ET")
    return b"\n".join(stream)


def render_pdf(lines: Sequence[str]) -> bytes:
    """Render lines as a PDF 1.4 document in Helvetica, wrapped and paged.

    Objects 1-3 are the catalog, page tree and font; each page then takes
    two objects, the page and its content stream.
    """
    pages = paginate(lines)
    kids = b" ".join(b"%d 0 R" % (4 + 2 * index) for index in range(len(pages)))

    objects = [
        b"<< /Type /Catalog /Pages 2 0 R >>",
        b"<< /Type /Pages /Kids [%s] /Count %d >>" % (kids, len(pages)),
        b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica /Encoding /WinAnsiEncoding >>",
    ]
    for index, page_lines in enumerate(pages):
        content = _page_stream(page_lines)
        objects.append(
            b"<< /Type /Page /Parent 2 0 R /MediaBox [0 0 %d %d] /Contents %d 0 R "
            b"/Resources << /Font << /F1 3 0 R >> >> >>"
            % (_PAGE_WIDTH, _PAGE_HEIGHT, 5 + 2 * index)
        )
        objects.append(
            b"<< /Length %d >>\nstream\n" % len(content) + content + b"\nendstream"
        )

    header = b"%PDF-1.4\n"
    body = []
    offsets = []
    position = len(header)
    for number, obj in enumerate(objects, start=1):
        chunk = b"%d 0 obj\n" % number + obj + b"\nendobj\n"
        offsets.append(position)
        body.append(chunk)
        position += len(chunk)

    xref = [b"xref", b"0 %d" % (len(objects) + 1), b"0000000000 65535 f "]
    xref += [b"%010d 00000 n " % offset for offset in offsets]
    trailer = b"trailer\n<< /Size %d /Root 1 0 R >>\nstartxref\n%d\n%%%%EOF\n" % (
        len(objects) + 1,
        position,
    )
    return header + b"".join(body) + b"\n".join(xref) + b"\n" + trailer
