"""Unit tests for report export."""

from datetime import date

import pytest
from docx import Document
from docx.oxml.ns import qn

from sprint_report.core.export_manager import EMPTY_TABLE_TEXT, ExportManager
from sprint_report.core.report_assembler import SprintReport, assemble_report
from sprint_report.utils.exceptions import ExportError, TemplateNotFoundError


def cell_fill(cell):
    shading = cell._tc.tcPr.find(qn("w:shd"))
    return shading.get(qn("w:fill")) if shading is not None else None


def all_text(document):
    parts = [p.text for p in document.paragraphs]
    for table in document.tables:
        for row in table.rows:
            parts.extend(cell.text for cell in row.cells)
    return "\n".join(parts)


@pytest.fixture
def template_path(tmp_path):
    document = Document()
    document.add_paragraph("Sprint Test Report")

    split = document.add_paragraph()
    split.add_run("Project: {{PRO")
    split.add_run("JECT}}").bold = True

    table = document.add_table(rows=2, cols=2)
    table.cell(0, 0).text = "Prepared by"
    table.cell(0, 1).text = "{{MEMBER_NAME}}"
    table.cell(1, 0).text = "Date"
    table.cell(1, 1).text = "{{FORM_DATE}} / {{SPRINT}}"

    path = tmp_path / "templates" / "template.docx"
    path.parent.mkdir()
    document.save(str(path))
    return path


@pytest.fixture
def report(sample_issues):
    return SprintReport(
        project="AIRPMD",
        sprint="Sprint 73",
        member_name="Jane Doe",
        aggregate=assemble_report(sample_issues),
        report_date=date(2025, 6, 2),
    )


@pytest.fixture
def export_manager():
    return ExportManager()


class TestDocxExport:
    def test_output_lands_beside_template(self, export_manager, report, template_path):
        output = export_manager.export_report(report, "docx", template_path=template_path)

        assert output == template_path.parent / "Sprint Sprint 73 AIRPMD Test Report.docx"
        assert output.exists()

    def test_placeholders_replaced_across_runs(self, export_manager, report, template_path):
        output = export_manager.export_report(report, "docx", template_path=template_path)
        document = Document(str(output))

        text = all_text(document)
        assert "{{" not in text
        assert "Project: AIRPMD" in text
        assert "Jane Doe" in text
        assert "2 June 2025 / Sprint 73" in text

    def test_summary_and_tables_are_appended(self, export_manager, report, template_path):
        output = export_manager.export_report(report, "docx", template_path=template_path)
        document = Document(str(output))

        headings = [p.text for p in document.paragraphs if p.style.name.startswith("Heading")]
        assert headings[0] == "Summary"
        assert "Bugs Opened During the Sprint" in headings
        assert any(p.text.startswith("• During testing, 3 bugs") for p in document.paragraphs)

        tables = document.tables[1:]
        assert len(tables) == 3
        assert [len(t.rows) for t in tables] == [8, 4, 3]
        assert [c.text for c in tables[0].rows[0].cells] == [
            "Project", "Issue Type", "Key", "Summary", "Status"
        ]

    def test_cells_are_color_coded(self, export_manager, report, template_path):
        output = export_manager.export_report(report, "docx", template_path=template_path)
        table = Document(str(output)).tables[1]

        assert cell_fill(table.rows[0].cells[0]) == "A6A6A6"
        fills = {row.cells[2].text: cell_fill(row.cells[4]) for row in table.rows[1:]}
        assert fills["AIRPMD-1"] == "92D050"
        assert fills["AIRPMD-3"] == "C9C9C9"
        assert fills["AIRPMD-7"] == "1E90FF"
        assert fills["AIRPMD-2"] == "FFFF00"

    def test_empty_section_has_placeholder_row(self, export_manager, sample_issues, template_path):
        bugs_only = SprintReport(
            project="AIRPMD",
            sprint="Sprint 73",
            member_name="Jane Doe",
            aggregate=assemble_report(sample_issues, ["Bug"]),
        )

        output = export_manager.export_report(bugs_only, "docx", template_path=template_path)
        improvements = Document(str(output)).tables[3]

        assert len(improvements.rows) == 2
        assert improvements.rows[1].cells[0].text == EMPTY_TABLE_TEXT

    def test_fields_update_on_open(self, export_manager, report, template_path):
        output = export_manager.export_report(report, "docx", template_path=template_path)
        settings = Document(str(output)).settings.element

        assert settings.find(qn("w:updateFields")).get(qn("w:val")) == "true"

    def test_unsafe_names_are_sanitized(self, export_manager, report, template_path):
        report.sprint = "Sprint 7/8"

        output = export_manager.export_report(report, "docx", template_path=template_path)

        assert output.name == "Sprint Sprint 7_8 AIRPMD Test Report.docx"

    def test_missing_template_raises(self, export_manager, report, tmp_path):
        with pytest.raises(TemplateNotFoundError):
            export_manager.export_report(
                report, "docx", template_path=tmp_path / "missing.docx"
            )

    def test_no_template_raises(self, export_manager, report):
        with pytest.raises(TemplateNotFoundError):
            export_manager.export_report(report, "docx")


class TestOtherFormats:
    def test_markdown(self, export_manager, sample_issues, tmp_path):
        bugs_only = SprintReport(
            project="AIRPMD",
            sprint="Sprint 73",
            member_name="Jane Doe",
            aggregate=assemble_report(sample_issues, ["Bug"]),
        )

        output = export_manager.export_report(bugs_only, "markdown", output_path=tmp_path / "r.md")
        content = output.read_text(encoding="utf-8")

        assert content.startswith("# Sprint Sprint 73 AIRPMD Test Report")
        assert "| Project | Issue Type | Key | Summary | Status |" in content
        assert "| AIRPMD | Bug | AIRPMD-1 | Login fails | Closed |" in content
        assert f"| {EMPTY_TABLE_TEXT} |" in content

    def test_pdf(self, export_manager, report, tmp_path):
        output = export_manager.export_report(report, "pdf", output_path=tmp_path / "r.pdf")

        assert output.read_bytes().startswith(b"%PDF")

    def test_default_name_for_markdown(self, export_manager, report, tmp_path):
        path = export_manager.resolve_output_path(report, "markdown", output_dir=tmp_path)

        assert path == tmp_path / "Sprint Sprint 73 AIRPMD Test Report.md"

    def test_unsupported_format(self, export_manager, report):
        with pytest.raises(ExportError):
            export_manager.export_report(report, "html")
