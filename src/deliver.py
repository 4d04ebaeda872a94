"""
Redfin PPSF Trends: Delivery

Writes every pipeline table to CSV, renders the PPSF trend charts with
matplotlib and an HTML summary report with Jinja2.
"""

import logging
from datetime import datetime
from pathlib import Path

import numpy as np
import pandas as pd
import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
from jinja2 import Template

logger = logging.getLogger(__name__)

TABLE_FILES = {
    'raw': 'redfin_raw.csv',
    'normalized': 'redfin_normalized.csv',
    'derived': 'redfin_derived.csv',
    'by_beds': 'ppsf_by_beds.csv',
    'by_beds_baths': 'ppsf_by_beds_baths.csv',
}

CHART_FILES = {
    'by_beds': 'ppsf_by_beds.png',
    'by_beds_baths': 'ppsf_by_beds_baths.png',
}

# Read back as labels, never as numbers
CATEGORICAL_COLUMNS = ['beds', 'baths', 'beds_baths']

# Total horizontal spread of the points sharing one year
DODGE_WIDTH = 0.15


def export_tables(results: dict, output_dir: Path) -> dict:
    """
    Write each pipeline table to its CSV file.

    Args:
        results: Tables keyed as in TABLE_FILES
        output_dir: Destination directory (created if needed)

    Returns:
        dict: Table name -> written path
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    paths = {}
    for name, filename in TABLE_FILES.items():
        df = results.get(name)
        if df is None:
            logger.warning(f"No {name} table to export")
            continue
        path = output_dir / filename
        df.to_csv(path, index=False)
        paths[name] = path
        logger.info(f"✅ Saved {len(df)} rows to {path}")
    return paths


def load_table(path: Path) -> pd.DataFrame:
    """
    Read an exported table, keeping bed/bath columns as labels.

    Only empty cells are missing; text such as "N/A" or "NULL" stays text.
    """
    path = Path(path)
    header = pd.read_csv(path, nrows=0).columns
    dtype = {col: str for col in CATEGORICAL_COLUMNS if col in header}
    return pd.read_csv(
        path, dtype=dtype, keep_default_na=False, na_values=[''],
        float_precision='round_trip', low_memory=False,
    )


def _group_order(values: pd.Series) -> list:
    """Distinct labels, numeric ones first in numeric order."""
    def sort_key(label):
        try:
            return (0, float(label), label)
        except ValueError:
            return (1, 0.0, label)

    return sorted(values.dropna().astype(str).unique(), key=sort_key)


def _plot_groups(ax, summary: pd.DataFrame, group_col: str):
    """
    One trend line per group: ppsf_avg over sold_year, an lb-ub error bar per
    point and the group size n as a label.
    """
    labels = _group_order(summary[group_col])
    if len(labels) > 1:
        offsets = np.linspace(-DODGE_WIDTH / 2, DODGE_WIDTH / 2, len(labels))
    else:
        offsets = [0.0]

    for i, (label, offset) in enumerate(zip(labels, offsets)):
        color = plt.cm.tab10(i % 10)
        group = summary[summary[group_col].astype(str) == label].sort_values('sold_year')
        x = group['sold_year'].astype(float) + offset
        y = group['ppsf_avg'].astype(float)

        ax.plot(x, y, marker='o', markersize=3, color=color, label=label)
        yerr = [
            (y - group['lb'].astype(float)).clip(lower=0),
            (group['ub'].astype(float) - y).clip(lower=0),
        ]
        ax.errorbar(x, y, yerr=yerr, fmt='none', ecolor=color, capsize=3, linewidth=1)

        for xi, yi, n in zip(x, y, group['n']):
            ax.annotate(
                f"{int(n)}", (xi, yi),
                textcoords='offset points', xytext=(0, 6), ha='center', fontsize=7,
                bbox=dict(boxstyle='round,pad=0.2', fc='white', ec=color, lw=0.5),
            )

    years = sorted(summary['sold_year'].astype(int).unique())
    ax.set_xticks(years)
    ax.set_xlabel('Sold year')
    ax.set_ylabel('PPSF ($/sq ft)')
    ax.grid(True, alpha=0.3)
    ax.legend(title=group_col, fontsize=8)


def plot_ppsf_by_beds(by_beds: pd.DataFrame, path: Path, ylim: tuple = None):
    """
    Mean PPSF with 10th-90th percentile band over time, one line per bedroom count.

    Returns:
        Path of the written PNG, or None if there was nothing to plot
    """
    if by_beds.empty:
        logger.warning("⚠️  No year x beds groups - skipping chart")
        return None

    logger.info("Creating PPSF by beds chart")
    fig, ax = plt.subplots(figsize=(10, 6))
    _plot_groups(ax, by_beds, 'beds')
    ax.set_title('Mean with CI over time by Beds', fontweight='bold')
    if ylim:
        ax.set_ylim(ylim)

    fig.tight_layout()
    fig.savefig(path, dpi=150, bbox_inches='tight')
    plt.close(fig)
    logger.info(f"✅ Saved chart to {path}")
    return Path(path)


def plot_ppsf_by_beds_baths(by_beds_baths: pd.DataFrame, path: Path, ylim: tuple = None):
    """
    Same encoding as plot_ppsf_by_beds with one facet per bedroom count and
    one line per bathroom count.

    Returns:
        Path of the written PNG, or None if there was nothing to plot
    """
    if by_beds_baths.empty:
        logger.warning("⚠️  No year x beds x baths groups - skipping chart")
        return None

    logger.info("Creating PPSF by beds and baths chart")
    beds = _group_order(by_beds_baths['beds'])
    ncols = min(3, len(beds))
    nrows = int(np.ceil(len(beds) / ncols))
    fig, axes = plt.subplots(nrows, ncols, figsize=(5 * ncols, 4 * nrows), squeeze=False, sharey=True)

    for ax, bed_label in zip(axes.flat, beds):
        facet = by_beds_baths[by_beds_baths['beds'].astype(str) == bed_label]
        _plot_groups(ax, facet, 'baths')
        ax.set_title(f"{bed_label} beds")
        if ylim:
            ax.set_ylim(ylim)

    for ax in list(axes.flat)[len(beds):]:
        ax.set_visible(False)

    fig.suptitle('Mean with CI over time by Beds and Baths', fontweight='bold')
    fig.tight_layout()
    fig.savefig(path, dpi=150, bbox_inches='tight')
    plt.close(fig)
    logger.info(f"✅ Saved chart to {path}")
    return Path(path)


def render_charts(results: dict, output_dir: Path, ylim: tuple = None) -> dict:
    """
    Render both charts into output_dir.

    Returns:
        dict: Chart name -> written path (charts with no data are omitted)
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    charts = {
        'by_beds': plot_ppsf_by_beds(results['by_beds'], output_dir / CHART_FILES['by_beds'], ylim),
        'by_beds_baths': plot_ppsf_by_beds_baths(
            results['by_beds_baths'], output_dir / CHART_FILES['by_beds_baths'], ylim
        ),
    }
    return {name: path for name, path in charts.items() if path is not None}


# HTML Report Template
REPORT_TEMPLATE = """
<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <title>Redfin PPSF Trends</title>
    <style>
        body {
            font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;
            line-height: 1.6;
            color: #333;
            max-width: 1000px;
            margin: 0 auto;
            padding: 20px;
            background-color: #f5f5f5;
        }
        .header {
            background: linear-gradient(135deg, #667eea 0%, #764ba2 100%);
            color: white;
            padding: 30px;
            border-radius: 8px 8px 0 0;
            text-align: center;
        }
        .header h1 { margin: 0; font-size: 28px; }
        .content {
            background: white;
            padding: 30px;
            border-radius: 0 0 8px 8px;
            box-shadow: 0 2px 4px rgba(0,0,0,0.1);
        }
        .section {
            margin: 30px 0;
            border-left: 4px solid #667eea;
            padding-left: 20px;
        }
        .section h2 { margin-top: 0; color: #667eea; font-size: 20px; }
        table { width: 100%; border-collapse: collapse; margin: 15px 0; font-size: 14px; }
        th {
            background-color: #f8f9fa;
            padding: 10px;
            text-align: left;
            border-bottom: 2px solid #dee2e6;
        }
        td { padding: 8px 10px; border-bottom: 1px solid #dee2e6; }
        img { max-width: 100%; }
        .no-data {
            color: #999;
            font-style: italic;
            padding: 20px;
            text-align: center;
            background-color: #f8f9fa;
        }
        .footer { margin-top: 30px; font-size: 13px; color: #666; }
    </style>
</head>
<body>
    <div class="header">
        <h1>Redfin PPSF Trends</h1>
        <p>{{ date }}</p>
    </div>

    <div class="content">
        <div class="section">
            <h2>Query</h2>
            <table>
                {% for key, value in query.items() %}
                <tr><th>{{ key }}</th><td>{{ value }}</td></tr>
                {% endfor %}
            </table>
        </div>

        <div class="section">
            <h2>PPSF by Beds</h2>
            {% if charts.by_beds %}<img src="{{ charts.by_beds }}" alt="PPSF by beds">{% endif %}
            {% if by_beds|length > 0 %}
            <table>
                <thead>
                    <tr><th>Year</th><th>Beds</th><th>N</th><th>Avg PPSF</th><th>P10</th><th>P90</th></tr>
                </thead>
                <tbody>
                    {% for row in by_beds %}
                    <tr>
                        <td>{{ row.sold_year }}</td>
                        <td>{{ row.beds }}</td>
                        <td>{{ row.n }}</td>
                        <td>${{ "{:,.2f}".format(row.ppsf_avg) }}</td>
                        <td>${{ "{:,.2f}".format(row.lb) }}</td>
                        <td>${{ "{:,.2f}".format(row.ub) }}</td>
                    </tr>
                    {% endfor %}
                </tbody>
            </table>
            {% else %}
            <div class="no-data">No sold listings matched the query.</div>
            {% endif %}
        </div>

        <div class="section">
            <h2>PPSF by Beds and Baths</h2>
            {% if charts.by_beds_baths %}<img src="{{ charts.by_beds_baths }}" alt="PPSF by beds and baths">{% endif %}
            {% if by_beds_baths|length > 0 %}
            <table>
                <thead>
                    <tr><th>Year</th><th>Beds</th><th>Baths</th><th>N</th><th>Avg PPSF</th><th>P10</th><th>P90</th><th>Years seen</th></tr>
                </thead>
                <tbody>
                    {% for row in by_beds_baths %}
                    <tr>
                        <td>{{ row.sold_year }}</td>
                        <td>{{ row.beds }}</td>
                        <td>{{ row.baths }}</td>
                        <td>{{ row.n }}</td>
                        <td>${{ "{:,.2f}".format(row.ppsf_avg) }}</td>
                        <td>${{ "{:,.2f}".format(row.lb) }}</td>
                        <td>${{ "{:,.2f}".format(row.ub) }}</td>
                        <td>{{ row.nyr }}</td>
                    </tr>
                    {% endfor %}
                </tbody>
            </table>
            {% else %}
            <div class="no-data">No beds x baths crossings with enough year coverage.</div>
            {% endif %}
        </div>

        <div class="footer">
            <strong>Pipeline Health:</strong><br>
            {% for stage, count in stats.row_counts.items() %}
            {{ stage }}: {{ count }} rows<br>
            {% endfor %}
            Execution Time: {{ stats.execution_time }}
        </div>
    </div>
</body>
</html>
"""


def render_report(results: dict, stats: dict, query: dict, charts: dict = None) -> str:
    """
    Render the HTML summary report.

    Args:
        results: Tables from transform.run_transformation
        stats: Pipeline statistics (row_counts, execution_time)
        query: Query parameters as display strings
        charts: Chart name -> file name, relative to the report

    Returns:
        Rendered HTML string
    """
    template = Template(REPORT_TEMPLATE)

    def df_to_list(df):
        if df is None or len(df) == 0:
            return []
        return df.to_dict('records')

    return template.render(
        date=datetime.now().strftime("%B %d, %Y"),
        query=query,
        charts=charts or {},
        by_beds=df_to_list(results.get('by_beds')),
        by_beds_baths=df_to_list(results.get('by_beds_baths')),
        stats=stats,
    )


def deliver_report(results: dict, stats: dict, query: dict, charts: dict, output_dir: Path) -> Path:
    """
    Write report.html next to the exported tables and charts.

    Returns:
        Path of the written report
    """
    logger.info("=" * 60)
    logger.info("WRITING REPORT")
    logger.info("=" * 60)

    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    chart_names = {name: Path(path).name for name, path in (charts or {}).items()}
    html_content = render_report(results, stats, query, chart_names)

    report_path = output_dir / "report.html"
    report_path.write_text(html_content, encoding="utf-8")
    logger.info(f"✅ Report written to {report_path}")
    return report_path
