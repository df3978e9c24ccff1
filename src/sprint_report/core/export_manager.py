"""Export manager for rendering sprint reports in various formats."""

from pathlib import Path
from typing import List, Optional, Union
from xml.sax.saxutils import escape

from docx import Document
from docx.enum.table import WD_ALIGN_VERTICAL
from docx.oxml import OxmlElement
from docx.oxml.ns import qn
from docx.shared import Inches
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4, landscape
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from ..integrations.jira_models import Issue
from ..utils.exceptions import ExportError, TemplateNotFoundError
from ..utils.logging_config import get_logger
from ..utils.validators import InputValidator
from .report_assembler import COLOR_HEADER, SprintReport, status_color

TABLE_COLUMNS = ("Project", "Issue Type", "Key", "Summary", "Status")
EMPTY_TABLE_TEXT = "(No issues)"
SUMMARY_HEADING = "Summary"
OVERVIEW_HEADING = "Testing, Defect Reporting and Improvement Status"

SUPPORTED_FORMATS = ("docx", "pdf", "markdown")
_EXTENSIONS = {"docx": ".docx", "pdf": ".pdf", "markdown": ".md"}


def _row(issue: Issue) -> List[str]:
    return [issue.project, issue.type, issue.key, issue.summary, issue.status]


class ExportManager:
    """Render a ``SprintReport`` to a file.

    Supports:
    - Word (.docx), filled into a user template
    - PDF (.pdf)
    - Markdown (.md)
    """

    def __init__(self):
        """Initialize the export manager."""
        self.logger = get_logger(__name__)

    def default_filename(self, report: SprintReport, format: str = "docx") -> str:
        """``Sprint {sprint} {project} Test Report`` with a format extension."""
        sprint = InputValidator.sanitize_filename(report.sprint or "Sprint")
        project = InputValidator.sanitize_filename(report.project or "Project")
        return f"Sprint {sprint} {project} Test Report{_EXTENSIONS[format]}"

    def resolve_output_path(
        self,
        report: SprintReport,
        format: str,
        template_path: Optional[Path] = None,
        output_dir: Optional[Path] = None,
    ) -> Path:
        """Output goes to ``output_dir``, else beside the template, else cwd."""
        if output_dir:
            directory = Path(output_dir)
        elif template_path:
            directory = Path(template_path).parent
        else:
            directory = Path.cwd()
        return directory / self.default_filename(report, format)

    def export_report(
        self,
        report: SprintReport,
        format: str,
        output_path: Optional[Union[str, Path]] = None,
        template_path: Optional[Union[str, Path]] = None,
    ) -> Path:
        """Export the report in the specified format.

        Args:
            report: Assembled report content
            format: Export format (docx, pdf, markdown)
            output_path: Target file; derived from the report when omitted
            template_path: Word template, required for docx

        Returns:
            Path of the written file

        Raises:
            TemplateNotFoundError: If the docx template does not exist
            ExportError: If export fails
        """
        format = (format or "").lower()
        if format not in SUPPORTED_FORMATS:
            raise ExportError(f"Unsupported export format: {format}")

        template = Path(template_path) if template_path else None
        if output_path:
            target = Path(output_path)
        else:
            target = self.resolve_output_path(report, format, template)

        try:
            if format == "docx":
                return self.export_docx(report, template, target)
            elif format == "pdf":
                return self.export_pdf(report, target)
            else:
                return self.export_markdown(report, target)

        except ExportError:
            raise
        except Exception as e:
            self.logger.error(f"Export failed: {e}")
            raise ExportError(f"Failed to export report: {e}")

    # ----- Word -----

    def export_docx(
        self, report: SprintReport, template_path: Optional[Path], filepath: Path
    ) -> Path:
        """Fill the template and append the summary and issue tables."""
        if template_path is None or not Path(template_path).is_file():
            raise TemplateNotFoundError(
                "Template not found.", details={"template": str(template_path)}
            )

        try:
            document = Document(str(template_path))

            for token, value in report.placeholders.items():
                self._replace_token(document, token, value)

            self._append_summary(document, report)
            for heading, issues in report.sections:
                self._add_heading(document, heading, level=2)
                self._add_issue_table(document, issues)
                document.add_paragraph(" ")

            self._enable_update_fields_on_open(document)

            filepath.parent.mkdir(parents=True, exist_ok=True)
            document.save(str(filepath))

            self.logger.info(f"Exported report to Word: {filepath}")
            return filepath

        except Exception as e:
            self.logger.error(f"Word export failed: {e}")
            raise ExportError(f"Failed to export Word document: {e}")

    @staticmethod
    def _iter_paragraphs(document):
        yield from document.paragraphs
        for table in document.tables:
            for row in table.rows:
                for cell in row.cells:
                    yield from cell.paragraphs
        for section in document.sections:
            for part in (section.header, section.footer):
                # reading a linked part would create an empty definition
                if not part.is_linked_to_previous:
                    yield from part.paragraphs

    def _replace_token(self, document, token: str, value: str) -> int:
        """Replace ``token`` even when Word split it over several runs.

        The merged text keeps the formatting of the paragraph's first run.
        """
        replaced = 0
        for paragraph in self._iter_paragraphs(document):
            runs = paragraph.runs
            if not runs:
                continue

            text = "".join(run.text for run in runs)
            if token not in text:
                continue

            runs[0].text = text.replace(token, value or "")
            for run in runs[1:]:
                run._element.getparent().remove(run._element)
            replaced += 1

        return replaced

    def _add_heading(self, document, text: str, level: int = 2):
        try:
            return document.add_heading(text, level=level)
        except KeyError:
            # Template without built-in heading styles
            paragraph = document.add_paragraph()
            paragraph.add_run(text).bold = True
            outline = OxmlElement("w:outlineLvl")
            outline.set(qn("w:val"), str(level - 1))
            paragraph._p.get_or_add_pPr().append(outline)
            return paragraph

    def _add_bullet(self, document, text: str):
        paragraph = document.add_paragraph(f"\u2022 {text}")
        paragraph.paragraph_format.left_indent = Inches(0.5)
        paragraph.paragraph_format.first_line_indent = Inches(-0.25)
        return paragraph

    def _append_summary(self, document, report: SprintReport) -> None:
        self._add_heading(document, SUMMARY_HEADING, level=2)
        document.add_paragraph(report.summary_paragraph)

        self._add_heading(document, OVERVIEW_HEADING, level=2)
        for bullet in report.bullets:
            self._add_bullet(document, bullet)
        document.add_paragraph(" ")

    @staticmethod
    def _shade(cell, fill: str) -> None:
        shading = OxmlElement("w:shd")
        shading.set(qn("w:val"), "clear")
        shading.set(qn("w:color"), "auto")
        shading.set(qn("w:fill"), fill)
        tc_pr = cell._tc.get_or_add_tcPr()
        # w:shd must precede w:vAlign
        v_align = tc_pr.find(qn("w:vAlign"))
        if v_align is not None:
            v_align.addprevious(shading)
        else:
            tc_pr.append(shading)

    @staticmethod
    def _set_borders(table) -> None:
        borders = OxmlElement("w:tblBorders")
        for edge in ("top", "left", "bottom", "right", "insideH", "insideV"):
            element = OxmlElement(f"w:{edge}")
            element.set(qn("w:val"), "single")
            element.set(qn("w:sz"), "6")
            element.set(qn("w:space"), "0")
            element.set(qn("w:color"), "auto")
            borders.append(element)
        tbl_pr = table._tbl.tblPr
        look = tbl_pr.find(qn("w:tblLook"))
        if look is not None:
            look.addprevious(borders)
        else:
            tbl_pr.append(borders)

    def _add_issue_table(self, document, issues: List[Issue]):
        table = document.add_table(rows=1, cols=len(TABLE_COLUMNS))
        self._set_borders(table)

        for cell, title in zip(table.rows[0].cells, TABLE_COLUMNS):
            cell.paragraphs[0].add_run(title).bold = True
            cell.vertical_alignment = WD_ALIGN_VERTICAL.CENTER
            self._shade(cell, COLOR_HEADER)

        if not issues:
            row = table.add_row()
            merged = row.cells[0].merge(row.cells[-1])
            merged.text = EMPTY_TABLE_TEXT
            return table

        for issue in issues:
            cells = table.add_row().cells
            for cell, value in zip(cells, _row(issue)):
                cell.text = value
                cell.vertical_alignment = WD_ALIGN_VERTICAL.CENTER
            self._shade(cells[-1], status_color(issue.status))

        return table

    @staticmethod
    def _enable_update_fields_on_open(document) -> None:
        """Ask Word to refresh fields such as the table of contents."""
        settings = document.settings.element
        update = settings.find(qn("w:updateFields"))
        if update is None:
            update = OxmlElement("w:updateFields")
            settings.append(update)
        update.set(qn("w:val"), "true")

    # ----- PDF -----

    def export_pdf(self, report: SprintReport, filepath: Path) -> Path:
        """Export the report as a PDF document."""
        try:
            filepath.parent.mkdir(parents=True, exist_ok=True)
            doc = SimpleDocTemplate(
                str(filepath),
                pagesize=landscape(A4),
                rightMargin=48,
                leftMargin=48,
                topMargin=48,
                bottomMargin=36,
            )

            styles = getSampleStyleSheet()
            title_style = ParagraphStyle(
                "ReportTitle",
                parent=styles["Heading1"],
                fontSize=20,
                textColor=colors.HexColor("#1a1a1a"),
                spaceAfter=18,
            )
            heading_style = ParagraphStyle(
                "ReportHeading",
                parent=styles["Heading2"],
                fontSize=14,
                textColor=colors.HexColor("#333333"),
                spaceAfter=10,
            )
            body_style = ParagraphStyle(
                "ReportBody",
                parent=styles["BodyText"],
                fontSize=10,
                leading=14,
                spaceAfter=8,
            )
            cell_style = ParagraphStyle(
                "ReportCell", parent=styles["BodyText"], fontSize=9, leading=11
            )

            placeholders = report.placeholders
            elements = [
                Paragraph(
                    escape(f"Sprint {report.sprint} {report.project} Test Report"),
                    title_style,
                ),
                Paragraph(
                    escape(
                        f"{placeholders['{{MEMBER_NAME}}']} - "
                        f"{placeholders['{{FORM_DATE}}']}"
                    ),
                    body_style,
                ),
                Spacer(1, 0.2 * inch),
                Paragraph(SUMMARY_HEADING, heading_style),
                Paragraph(escape(report.summary_paragraph), body_style),
                Paragraph(escape(OVERVIEW_HEADING), heading_style),
            ]
            for bullet in report.bullets:
                elements.append(Paragraph(escape(bullet), body_style, bulletText="\u2022"))

            for heading, issues in report.sections:
                elements.append(Spacer(1, 0.2 * inch))
                elements.append(Paragraph(escape(heading), heading_style))
                elements.append(self._pdf_table(issues, cell_style))

            doc.build(elements)

            self.logger.info(f"Exported report to PDF: {filepath}")
            return filepath

        except Exception as e:
            self.logger.error(f"PDF export failed: {e}")
            raise ExportError(f"Failed to export PDF: {e}")

    def _pdf_table(self, issues: List[Issue], cell_style: ParagraphStyle) -> Table:
        data = [list(TABLE_COLUMNS)]
        commands = [
            ("GRID", (0, 0), (-1, -1), 0.5, colors.black),
            ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
            ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor(f"#{COLOR_HEADER}")),
            ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
        ]

        if not issues:
            data.append([EMPTY_TABLE_TEXT, "", "", "", ""])
            commands.append(("SPAN", (0, 1), (-1, 1)))
        else:
            for row_index, issue in enumerate(issues, start=1):
                data.append([Paragraph(escape(value), cell_style) for value in _row(issue)])
                fill = colors.HexColor(f"#{status_color(issue.status)}")
                commands.append(("BACKGROUND", (4, row_index), (4, row_index), fill))

        widths = [1.4 * inch, 1.0 * inch, 1.0 * inch, 4.6 * inch, 1.3 * inch]
        table = Table(data, colWidths=widths, repeatRows=1)
        table.setStyle(TableStyle(commands))
        return table

    # ----- Markdown -----

    def export_markdown(self, report: SprintReport, filepath: Path) -> Path:
        """Export the report as a Markdown file."""
        try:
            content = self._format_markdown(report)

            filepath.parent.mkdir(parents=True, exist_ok=True)
            with open(filepath, "w", encoding="utf-8") as f:
                f.write(content)

            self.logger.info(f"Exported report to Markdown: {filepath}")
            return filepath

        except Exception as e:
            self.logger.error(f"Markdown export failed: {e}")
            raise ExportError(f"Failed to export Markdown: {e}")

    @staticmethod
    def _md_cell(value: str) -> str:
        return (value or "").replace("|", "\\|").replace("\n", " ")

    def _format_markdown(self, report: SprintReport) -> str:
        placeholders = report.placeholders
        lines = [
            f"# Sprint {report.sprint} {report.project} Test Report",
            "",
            f"*{placeholders['{{MEMBER_NAME}}']} - {placeholders['{{FORM_DATE}}']}*",
            "",
            f"## {SUMMARY_HEADING}",
            "",
            report.summary_paragraph,
            "",
            f"## {OVERVIEW_HEADING}",
            "",
        ]
        lines.extend(f"- {bullet}" for bullet in report.bullets)

        for heading, issues in report.sections:
            lines.extend(["", f"## {heading}", ""])
            lines.append("| " + " | ".join(TABLE_COLUMNS) + " |")
            lines.append("|" + "---|" * len(TABLE_COLUMNS))
            if not issues:
                lines.append(f"| {EMPTY_TABLE_TEXT} |" + " |" * (len(TABLE_COLUMNS) - 1))
            for issue in issues:
                lines.append(
                    "| " + " | ".join(self._md_cell(v) for v in _row(issue)) + " |"
                )

        return "\n".join(lines) + "\n"
