#!/usr/bin/env python3
"""Dataset generation script for performance testing.

Generates synthetic TireMaster "Invoice Detail Report" exports (.csv or .xlsx) with the
row shapes the importer has to cope with:
- report banner / page header rows ("Invoice Detail Report", "Product Code" ...)
- "Invoice #" header rows with customer / date / salesperson / tax / total labels
- standard line item rows (columns 0-10)
- "Totals for Invoice #" footers, a share of them carrying an embedded line item in
  columns 27-37 of an "Invoice Detail Report" row

Run against the importer with source_directory pointing at the output directory.
"""
from __future__ import annotations

import argparse
import sys
from pathlib import Path

import numpy as np
import pandas as pd

COLUMN_HEADER = ["Product Code", "Size & Desc.", "Adjustment", "QTY", "Parts", "Labor",
                 "FET", "Total", "Cost", "GPM%", "GP$"]
EMBEDDED_OFFSET = 27

PRODUCTS = [
    # code, description, is labor
    ("LT2657017OP", "LT265/70R17 ALL TERRAIN", False),
    ("P2256517", "225/65R17 TOURING", False),
    ("SRV-ALIGN", "4 WHEEL ALIGNMENT SERVICE", True),
    ("LAB-MOUNT", "MOUNT AND BALANCE LABOR", True),
    ("48-01-0101", "TIRE DISPOSAL FEE", False),
    ("VS-1234", "VALVE STEM", False),
    ("OIL-5W30", "SYNTHETIC OIL 5W30", False),
]
CUSTOMERS = ["JOHN DOE", "ACME FLEET", "ZZ-VISA/MASTERCARD", "JANE ROE", "CITY OF SPRINGFIELD"]
SALESPEOPLE = ["MIKE", "SARA", "TOM"]


def _money(value: float) -> str:
    return f"{value:.2f}"


def generate_report_rows(
    invoices: int,
    items_per_invoice: int,
    *,
    site: int = 3,
    start_number: int = 300_000,
    embedded_ratio: float = 0.2,
    seed: int = 42,
) -> list[list[str]]:
    """Generate the rows (list of fields) of one report export.

    Args:
        invoices: Number of invoices
        items_per_invoice: Mean line items per invoice (Poisson, at least 1)
        site: Site code prefix of the invoice numbers
        start_number: First invoice number
        embedded_ratio: Share of invoices whose last item sits in the footer row
        seed: Random seed for reproducible data

    Returns:
        Rows in file order
    """
    rng = np.random.default_rng(seed)
    rows: list[list[str]] = [
        ["Invoice Detail Report", f"Site# {site}"],
        ["Selected Date Range: 1/1/2025 - 1/31/2025"],
    ]
    item_counts = np.maximum(1, rng.poisson(items_per_invoice, invoices))
    for idx in range(invoices):
        number = f"{site}-{start_number + idx}"
        day = int(rng.integers(1, 29))
        tax = round(float(rng.uniform(0, 60)), 2)

        items: list[list[str]] = []
        invoice_total = 0.0
        for _ in range(int(item_counts[idx])):
            code, desc, is_labor = PRODUCTS[int(rng.integers(0, len(PRODUCTS)))]
            qty = int(rng.integers(1, 5))
            unit = round(float(rng.uniform(5, 250)), 2)
            parts = 0.0 if is_labor else unit * qty
            labor = unit * qty if is_labor else 0.0
            fet = round(qty * 1.5, 2) if code.endswith("OP") else 0.0
            total = round(parts + labor + fet, 2)
            cost = round(total * float(rng.uniform(0.4, 0.9)), 2)
            gp = round(total - cost, 2)
            gpm = round(gp / total * 100, 2) if total else 0.0
            invoice_total += total
            items.append([code, desc, "", str(qty), _money(parts), _money(labor), _money(fet),
                          _money(total), _money(cost), _money(gpm), _money(gp)])

        rows.append([
            "Invoice #", number,
            "Customer Name:", CUSTOMERS[int(rng.integers(0, len(CUSTOMERS)))],
            "Invoice Date:", f"1/{day}/2025",
            "Salesperson:", SALESPEOPLE[int(rng.integers(0, len(SALESPEOPLE)))],
            "Tax:", _money(tax),
            "Total:", _money(invoice_total + tax),
        ])
        rows.append(list(COLUMN_HEADER))

        embedded = len(items) > 1 and rng.random() < embedded_ratio
        body = items[:-1] if embedded else items
        rows.extend(body)
        if embedded:
            footer = ["Invoice Detail Report", f"Totals for Invoice # {number}"]
            footer += [""] * (EMBEDDED_OFFSET - len(footer))
            rows.append(footer + items[-1])
        else:
            rows.append([f"Totals for Invoice # {number}", "", _money(invoice_total)])

    rows.append(["Totals for Report", str(invoices)])
    return rows


def render_csv_line(fields: list[str]) -> str:
    """Quote every field the way the vendor export does."""
    return ",".join(f'"{f}"' for f in fields)


def write_report(output_path: Path, rows: list[list[str]]) -> None:
    output_path.parent.mkdir(parents=True, exist_ok=True)
    if output_path.suffix.lower() == ".xlsx":
        pd.DataFrame(rows).to_excel(output_path, header=False, index=False, engine="openpyxl")
    else:
        output_path.write_text("\n".join(render_csv_line(r) for r in rows) + "\n", encoding="utf-8")


def main() -> int:
    """Main CLI interface for dataset generation."""
    parser = argparse.ArgumentParser(
        description="Generate synthetic Invoice Detail Report exports for performance testing",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # 5,000 invoices with ~4 items each
  %(prog)s data/perf.csv

  # Excel export with 20k invoices
  %(prog)s data/perf.xlsx --invoices 20000 --items 6
        """
    )
    parser.add_argument("output", type=Path, help="Output .csv/.txt/.xlsx path")
    parser.add_argument("--invoices", type=int, default=5_000, help="Number of invoices (default: 5,000)")
    parser.add_argument("--items", type=int, default=4, help="Mean line items per invoice (default: 4)")
    parser.add_argument("--site", type=int, default=3, help="Site code (default: 3)")
    parser.add_argument("--embedded-ratio", type=float, default=0.2,
                        help="Share of footers carrying an embedded item (default: 0.2)")
    parser.add_argument("--seed", type=int, default=42, help="Random seed (default: 42)")
    parser.add_argument("--dry-run", action="store_true",
                        help="Show what would be generated without creating files")
    args = parser.parse_args()

    if args.invoices <= 0:
        print("Error: --invoices must be positive", file=sys.stderr)
        return 1
    if args.items <= 0:
        print("Error: --items must be positive", file=sys.stderr)
        return 1
    if not 0 <= args.embedded_ratio <= 1:
        print("Error: --embedded-ratio must be within [0, 1]", file=sys.stderr)
        return 1

    print("Dataset generation plan:")
    print(f"  Output file: {args.output}")
    print(f"  Invoices: {args.invoices:,} (~{args.items} items each)")
    print(f"  Embedded footer items: {args.embedded_ratio:.0%}")
    print(f"  Random seed: {args.seed}")

    if args.dry_run:
        print("\n[DRY RUN] Would generate files but not creating them.")
        return 0

    try:
        rows = generate_report_rows(
            args.invoices,
            args.items,
            site=args.site,
            embedded_ratio=args.embedded_ratio,
            seed=args.seed,
        )
        write_report(args.output, rows)
    except OSError as e:
        print(f"\nError generating dataset: {e}", file=sys.stderr)
        return 1
    print(f"\nCreated report: {args.output} ({len(rows):,} rows)")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
