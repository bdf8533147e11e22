#!/usr/bin/env python3
"""
Collection KPI Report Generator

Generates an Excel workbook with every engine output laid out for pivot
tables and charts:
1. Raw Records
2. Dimension Summaries (Region, Channel, Product, Branch)
3. Monthly Collection Performance
4. Risk Buckets and Per-Record Risk Detail
5. Drill-Down Tree (flattened)
6. Branch x Product Heat Map
7. Collection Rate Forecast
8. Prediction Variance

Usage:
    python generate_kpi_report.py --seed 42 --output Collection_KPI_Report.xlsx
"""

import argparse
from typing import List, Optional, Sequence

import pandas as pd
from openpyxl.formatting.rule import ColorScaleRule
from openpyxl.styles import Font, PatternFill
from openpyxl.utils import get_column_letter

from collection_engine import (
    CollectionKPICalculator, Config, DrillBranch, DrillNode, RecordFilter,
    build_synthetic_store, classify_records,
)

HEADER_FONT = Font(bold=True, color='FFFFFF')
HEADER_FILL = PatternFill(start_color='1F4E78', end_color='1F4E78', fill_type='solid')


def summary_frame(calculator: CollectionKPICalculator, dimension: str) -> pd.DataFrame:
    """One row per member of `dimension` with its DimensionSummary fields."""
    getters = {
        'region': calculator.get_regional,
        'channel': calculator.get_channel,
        'product': calculator.get_product,
        'branch': calculator.get_branch,
    }
    rows = []
    for member in calculator.store.members(dimension):
        summary = getters[dimension](member)
        row = {
            dimension.title(): member,
            'Portfolio': summary.portfolio,
            'Collection_Rate': round(summary.collection_rate, 2),
            'Current_Gap': summary.current_gap,
            'Branch_Count': summary.branch_count,
        }
        if dimension == 'branch':
            row['Region'] = summary.region
            row['Channel'] = summary.channel
        rows.append(row)
    return pd.DataFrame(rows)


def flatten_drill_tree(nodes: Sequence[DrillNode], path: Optional[List[str]] = None) -> List[dict]:
    """Depth-first rows of the drill tree with the breadcrumb path of each node."""
    path = path or []
    rows = []
    for node in nodes:
        node_path = path + [node.name]
        rows.append({
            'Level': node.level,
            'Depth': len(path),
            'Path': ' > '.join(node_path),
            'Name': node.name,
            'Value': node.value,
            'Collection_Rate': round(node.collection_rate, 2),
            'Has_Children': isinstance(node, DrillBranch),
        })
        if isinstance(node, DrillBranch):
            rows.extend(flatten_drill_tree(node.children, node_path))
    return rows


def _style_header(worksheet) -> None:
    for cell in worksheet[1]:
        cell.font = HEADER_FONT
        cell.fill = HEADER_FILL


def generate_kpi_report(seed: int = Config.DEFAULT_SEED,
                        output_path: str = 'Collection_KPI_Report.xlsx',
                        forecast_months: int = Config.DEFAULT_HORIZON,
                        record_filter: Optional[RecordFilter] = None) -> str:
    """
    Generate the Excel KPI report for one synthetic dataset.

    Args:
        seed: Generator seed
        output_path: Workbook path to write
        forecast_months: Collection rate forecast horizon
        record_filter: Optional caller-side filter applied before any KPI

    Returns:
        str: Path of the written workbook
    """
    print("=" * 70)
    print("GENERATING COLLECTION KPI REPORT")
    print("=" * 70)

    # ==========================================================================
    # STEP 1: Build the record store
    # ==========================================================================
    print("\n[1/7] Building record store...")
    store = build_synthetic_store(seed)
    if record_filter is not None and not record_filter.is_empty:
        print(f"  Filters: {record_filter.describe()}")
        store = store.filtered(record_filter)
    calculator = CollectionKPICalculator(store)
    print(f"  {len(store)} records, current period {store.current_period}")

    # ==========================================================================
    # STEP 2: Headline KPIs and dimension summaries
    # ==========================================================================
    print("[2/7] Summarising portfolio and dimensions...")
    portfolio = calculator.get_portfolio_summary()
    headline_df = pd.DataFrame([
        {'KPI': 'Total Portfolio', 'Value': portfolio.total},
        {'KPI': 'Branches', 'Value': portfolio.branch_count},
        {'KPI': 'Regions', 'Value': portfolio.region_count},
        {'KPI': 'Products', 'Value': portfolio.product_count},
        {'KPI': 'Channels', 'Value': portfolio.channel_count},
        {'KPI': 'Average Policy Size', 'Value': round(portfolio.avg, 2)},
        {'KPI': 'Median Policy Size', 'Value': portfolio.median},
        {'KPI': 'Smallest Policy Amount', 'Value': portfolio.min_amount},
        {'KPI': 'Largest Policy Amount', 'Value': portfolio.max_amount},
        {'KPI': 'Overall Collection Rate %', 'Value': round(calculator.get_overall_collection_rate(), 2)},
        {'KPI': 'Total Collections', 'Value': calculator.get_total_collections()},
        {'KPI': 'Prediction Accuracy %', 'Value': round(calculator.get_prediction_accuracy(), 2)},
        {'KPI': 'Current Period Target', 'Value': calculator.get_current_period_target()},
        {'KPI': 'Current Period Prediction', 'Value': calculator.get_current_period_prediction()},
        {'KPI': 'Prediction Gap', 'Value': calculator.get_prediction_gap()},
        {'KPI': 'Prediction Gap %', 'Value': round(calculator.get_prediction_gap_percent(), 2)},
    ])
    dimension_frames = {
        dimension: summary_frame(calculator, dimension)
        for dimension in ['region', 'channel', 'product', 'branch']
    }

    # ==========================================================================
    # STEP 3: Monthly performance
    # ==========================================================================
    print("[3/7] Calculating monthly performance...")
    monthly_df = pd.DataFrame(
        [{'Period': period, 'Collection_Rate': round(rate, 2)} for period, rate in calculator.get_monthly_series()]
    )

    # ==========================================================================
    # STEP 4: Risk
    # ==========================================================================
    print("[4/7] Classifying current-period risk...")
    risk_df = pd.DataFrame([
        {'Tier': bucket.tier.value, 'Records': bucket.count, 'Exposure': bucket.amount}
        for bucket in calculator.get_risk_analysis().values()
    ])
    risk_detail_df = classify_records(store)

    # ==========================================================================
    # STEP 5: Hierarchy
    # ==========================================================================
    print("[5/7] Building drill tree and heat map...")
    drill_df = pd.DataFrame(flatten_drill_tree(calculator.build_drill_tree()))
    heat = calculator.get_heat_matrix('branch', 'product', 'collection_rate')
    heat_df = heat.to_frame().round(2)

    # ==========================================================================
    # STEP 6: Forecast and variance
    # ==========================================================================
    print("[6/7] Projecting collection rate and prediction variance...")
    forecast_df = pd.DataFrame([
        {
            'Period': p.period,
            'DataType': 'Actual' if p.is_historical else 'Forecast',
            'Actual': p.actual,
            'Forecast': p.forecast,
            'Confidence': p.confidence,
        }
        for p in calculator.get_collection_rate_forecast(forecast_months)
    ])
    variance_df = pd.DataFrame([
        {
            'Branch': v.key,
            'Actual': v.actual,
            'Predicted': v.predicted,
            'Variance': v.variance,
            'Variance_Pct': round(v.variance_pct, 2),
            'Within_Tolerance': v.within_tolerance,
        }
        for v in calculator.get_prediction_variance('branch')
    ])

    # ==========================================================================
    # WRITE TO EXCEL
    # ==========================================================================
    print("[7/7] Writing Excel file...")

    sheets = [
        ('1_Headline_KPIs', headline_df, 'Portfolio, collection and current-period KPIs'),
        ('2_Records', store.to_frame(), 'Every record the KPIs were computed from'),
        ('3_Region', dimension_frames['region'], 'Portfolio, collection rate and current gap by region'),
        ('4_Channel', dimension_frames['channel'], 'Portfolio, collection rate and current gap by channel'),
        ('5_Product', dimension_frames['product'], 'Portfolio, collection rate and current gap by product'),
        ('6_Branch', dimension_frames['branch'], 'Portfolio, collection rate and current gap by branch'),
        ('7_Monthly', monthly_df, 'Collection rate per closed month'),
        ('8_Risk_Buckets', risk_df, 'Current-period records and exposure per risk tier'),
        ('9_Risk_Detail', risk_detail_df, 'Gap, gap % and tier for every current-period record'),
        ('10_Drill_Tree', drill_df, 'Region > Branch > Product rollup, depth first'),
        ('11_Heat_Map', heat_df, 'Collection rate % by branch (rows) and product (columns)'),
        ('12_Forecast', forecast_df, 'Monthly collection rate with linear projection'),
        ('13_Pred_Variance', variance_df, 'Predicted minus actual collections by branch'),
    ]

    with pd.ExcelWriter(output_path, engine='openpyxl') as writer:
        readme_df = pd.DataFrame({
            'Sheet Name': [name for name, _, _ in sheets],
            'Description': [description for _, _, description in sheets],
        })
        readme_df.to_excel(writer, sheet_name='README', index=False)

        for name, frame, _ in sheets:
            frame.to_excel(writer, sheet_name=name, index=(name == '11_Heat_Map'))
            _style_header(writer.sheets[name])

        # Colour the heat map body by value
        if heat.cell_count > 0:
            last_col = get_column_letter(len(heat.cols) + 1)
            body = f"B2:{last_col}{len(heat.rows) + 1}"
            writer.sheets['11_Heat_Map'].conditional_formatting.add(
                body,
                ColorScaleRule(start_type='min', start_color='F8696B',
                               mid_type='percentile', mid_value=50, mid_color='FFEB84',
                               end_type='max', end_color='63BE7B')
            )

    print(f"\n{'=' * 70}")
    print(f"SUCCESS! Report saved to: {output_path}")
    print(f"{'=' * 70}")

    print("\nSheets created:")
    print("  - README: Guide to each sheet")
    for name, _, description in sheets:
        print(f"  - {name}: {description}")

    return output_path


def main():
    parser = argparse.ArgumentParser(description='Generate Collection KPI Report')
    parser.add_argument('--seed', '-s', type=int, default=Config.DEFAULT_SEED,
                        help='Random seed for the synthetic data')
    parser.add_argument('--output', '-o', default='Collection_KPI_Report.xlsx',
                        help='Output Excel file path')
    parser.add_argument('--months', '-n', type=int, default=Config.DEFAULT_HORIZON,
                        help='Forecast horizon in months')
    parser.add_argument('--region', default=None, help='Only include this region')
    parser.add_argument('--channel', default=None, help='Only include this channel')

    args = parser.parse_args()

    generate_kpi_report(
        seed=args.seed,
        output_path=args.output,
        forecast_months=args.months,
        record_filter=RecordFilter(region=args.region, channel=args.channel),
    )


if __name__ == '__main__':
    main()
