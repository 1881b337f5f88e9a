from io import BytesIO

from openpyxl import load_workbook

from phaseboard.api.csv_utils import csv_escape, csv_text_from_rows
from phaseboard.api.public_views import PIVOT_COLUMNS, public_pivot_record
from phaseboard.core.models import AssetIdentity, AssetPivotRecord, PhaseSummary
from phaseboard.core.phases import Phase
from phaseboard.exporters.excel_builder import build_xlsx_from_pivot


def _sample_rows(make_event):
    hero = AssetPivotRecord(
        identity=AssetIdentity("demo", "assets", "hero, the", "main"),
        leaf_group_name="heroes",
        group_category_path="character/hero",
        top_group_node="character",
    )
    hero.phases[Phase.RIG] = PhaseSummary.from_event(make_event("hero, the", phase="rig", work="wip"))
    prop = AssetPivotRecord(identity=AssetIdentity("demo", "assets", "crate", "main"))
    return [public_pivot_record(hero), public_pivot_record(prop)]


def test_pivot_columns_have_fixed_phase_shape():
    assert PIVOT_COLUMNS[:2] == ("group_1", "relation")
    assert len(PIVOT_COLUMNS) == 7 + 5 * 3
    assert "ldv_submitted_at_utc" in PIVOT_COLUMNS


def test_csv_escape_quotes_special_characters():
    assert csv_escape("plain") == "plain"
    assert csv_escape('say "hi"') == '"say ""hi"""'
    assert csv_escape("a,b") == '"a,b"'


def test_csv_text_from_rows(make_event):
    text = csv_text_from_rows(PIVOT_COLUMNS, _sample_rows(make_event))
    lines = text.split("\n")
    assert lines[0].split(",")[:3] == ["group_1", "relation", "project"]
    assert lines[1].startswith('"hero, the",main,demo,assets,heroes,character/hero,character')
    assert lines[2].startswith("crate,main,demo,assets,,,Unassigned")
    assert text.endswith("\n")


def test_build_xlsx_from_pivot(make_event):
    content = build_xlsx_from_pivot(PIVOT_COLUMNS, _sample_rows(make_event), "demo")
    wb = load_workbook(BytesIO(content))

    ws = wb["Pivot"]
    assert ws.cell(row=1, column=1).value == "group_1"
    assert ws.cell(row=1, column=1).font.bold is True
    assert ws.cell(row=2, column=1).value == "hero, the"
    rig_work_col = PIVOT_COLUMNS.index("rig_work_status") + 1
    assert ws.cell(row=2, column=rig_work_col).value == "wip"
    assert ws.freeze_panes == "A2"

    groups = wb["Groups"]
    assert [(row[0].value, row[1].value) for row in groups.iter_rows(min_row=2)] == [
        ("character", 1),
        ("Unassigned", 1),
    ]


def test_build_xlsx_without_rows_has_only_pivot_sheet():
    wb = load_workbook(BytesIO(build_xlsx_from_pivot(PIVOT_COLUMNS, [], "demo")))
    assert wb.sheetnames == ["Pivot"]
    assert wb["Pivot"].max_row == 1
