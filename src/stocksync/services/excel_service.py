from __future__ import annotations

import logging

from openpyxl import Workbook
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.table import Table, TableStyleInfo

log = logging.getLogger(__name__)


class ExcelService:
    """Workbook export of stock updates that still need attention."""

    def __init__(self, queue, store):
        self.queue = queue
        self.store = store

    def _product_label(self, product_id: int) -> str:
        p = self.store.find(product_id)
        return p.name if p else "(removed)"

    def export_sync_issues(self, path: str) -> tuple[int, int]:
        """
        Sheets:
          Dead letters | product_id | product | delta | attempts | error | timestamp
          Pending      | product_id | product | delta | attempts | queued at
        Returns (dead_letter_rows, pending_rows).
        """
        wb = Workbook()

        def bold_row(ws, r):
            for c in ws[r]:
                c.font = Font(bold=True)

        def set_widths(ws, widths: dict[str, int]):
            for col, w in widths.items():
                ws.column_dimensions[col].width = w

        def add_table(ws, name: str, end_col: int):
            ref = f"A1:{get_column_letter(end_col)}{ws.max_row}"
            tab = Table(displayName=name, ref=ref)
            tab.tableStyleInfo = TableStyleInfo(
                name="TableStyleMedium9",
                showRowStripes=True,
                showColumnStripes=False,
            )
            ws.add_table(tab)

        dead = self.queue.dead_letters()
        ws = wb.active
        ws.title = "Dead letters"
        ws.append(["Product ID", "Product", "Delta", "Attempts", "Error", "Timestamp"])
        bold_row(ws, 1)
        for d in dead:
            ws.append([d.product_id, self._product_label(d.product_id), d.delta, d.attempts, d.error, d.timestamp])
        ws.freeze_panes = "A2"
        set_widths(ws, {"A": 18, "B": 34, "C": 10, "D": 10, "E": 48, "F": 28})
        if ws.max_row >= 2:
            add_table(ws, "DeadLetters", 6)

        pending = self.queue.entries()
        ws2 = wb.create_sheet("Pending")
        ws2.append(["Product ID", "Product", "Delta", "Attempts", "Queued at"])
        bold_row(ws2, 1)
        for e in pending:
            ws2.append([e.product_id, self._product_label(e.product_id), e.quantity_delta, e.attempts, e.timestamp])
        ws2.freeze_panes = "A2"
        set_widths(ws2, {"A": 18, "B": 34, "C": 10, "D": 10, "E": 28})
        if ws2.max_row >= 2:
            add_table(ws2, "PendingUpdates", 5)

        wb.save(path)
        log.info("sync_issues_exported path=%s dead=%s pending=%s", path, len(dead), len(pending))
        return len(dead), len(pending)
