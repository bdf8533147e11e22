import pandas as pd
import pytest
from openpyxl import load_workbook

from collection_engine import (
    CollectionKPICalculator, Config, RecordFilter, build_drill_tree, build_synthetic_store,
)
from generate_kpi_report import flatten_drill_tree, generate_kpi_report, summary_frame

EXPECTED_SHEETS = [
    'README', '1_Headline_KPIs', '2_Records', '3_Region', '4_Channel', '5_Product', '6_Branch',
    '7_Monthly', '8_Risk_Buckets', '9_Risk_Detail', '10_Drill_Tree', '11_Heat_Map',
    '12_Forecast', '13_Pred_Variance',
]


@pytest.fixture(scope='module')
def report_path(tmp_path_factory):
    path = tmp_path_factory.mktemp('report') / 'kpis.xlsx'
    return generate_kpi_report(seed=7, output_path=str(path), forecast_months=2)


def test_workbook_sheets(report_path):
    assert load_workbook(report_path).sheetnames == EXPECTED_SHEETS


def test_header_is_styled(report_path):
    sheet = load_workbook(report_path)['3_Region']
    assert sheet['A1'].value == 'Region'
    assert sheet['A1'].font.bold


def test_risk_buckets_cover_current_period(report_path):
    risk = pd.read_excel(report_path, sheet_name='8_Risk_Buckets')
    assert list(risk['Tier']) == ['Low', 'Medium', 'High']
    assert risk['Records'].sum() == Config.BRANCH_COUNT * len(Config.PRODUCTS)


def test_drill_tree_rows(report_path):
    drill = pd.read_excel(report_path, sheet_name='10_Drill_Tree')
    regions = len(Config.REGIONS)
    leaves = Config.BRANCH_COUNT * len(Config.PRODUCTS)
    assert len(drill) == regions + Config.BRANCH_COUNT + leaves
    assert set(drill['Depth']) == {0, 1, 2}


def test_forecast_rows(report_path):
    forecast = pd.read_excel(report_path, sheet_name='12_Forecast')
    assert (forecast['DataType'] == 'Forecast').sum() == 2
    assert (forecast['DataType'] == 'Actual').sum() == len(Config.MONTHS) - 1


def test_heat_map_has_conditional_colouring(report_path):
    sheet = load_workbook(report_path)['11_Heat_Map']
    assert len(list(sheet.conditional_formatting)) == 1


def test_filtered_report(tmp_path):
    path = generate_kpi_report(seed=7, output_path=str(tmp_path / 'mumbai.xlsx'),
                               record_filter=RecordFilter(region='Mumbai', channel='SBI'))
    branches = pd.read_excel(path, sheet_name='6_Branch')
    assert set(branches['Region']) == {'Mumbai'}
    assert set(branches['Channel']) == {'SBI'}


def test_summary_frame_for_branches():
    frame = summary_frame(CollectionKPICalculator(build_synthetic_store(7)), 'branch')
    assert len(frame) == Config.BRANCH_COUNT
    assert list(frame.columns) == [
        'Branch', 'Portfolio', 'Collection_Rate', 'Current_Gap', 'Branch_Count', 'Region', 'Channel',
    ]


def test_flatten_paths(small_store):
    rows = flatten_drill_tree(build_drill_tree(small_store))
    assert rows[0]['Path'] == 'North'
    assert rows[1]['Path'] == 'North > B1'
    assert rows[2] == {
        'Level': 'product', 'Depth': 2, 'Path': 'North > B1 > P1', 'Name': 'P1',
        'Value': 1200.0, 'Collection_Rate': 85.0, 'Has_Children': False,
    }
