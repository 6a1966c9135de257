# billLayout.py
"""
Page placement for bills and prescriptions.

The item table and the summary block (totals, advice) are laid out on A4
pages. Where the summary goes depends on the item count, but every decision
is checked against a measurement of the actual content:

* 8 items or more: the summary always starts on page 2.
* exactly 7 items: try a compressed summary on page 1, re-measure, and fall
  back to page 2 (normal size) if page 1 still overflows.
* 6 items or fewer: the summary stays on page 1 unless page 1 overflows.

Rows that do not fit page 1 are moved, in order, to the following pages.

Layouts are computed against a *surface*: any object with
``measure(rows, with_summary, compressed)`` returning the content height of a
page holding those rows, and ``capacity(page_index)`` returning the height
available on that page. ``EstimatedSurface`` works from plain numbers;
pdfExport supplies a surface that measures with real font metrics.
"""
import logging
from collections import namedtuple

logger = logging.getLogger(__name__)

SUMMARY_ON_PAGE2_AT = 8
COMPRESS_AT = 7
# rounding slack between measured and available height
TOLERANCE = 2


BillLayout = namedtuple("BillLayout", ["pages", "summary_page", "compressed", "compression_attempted"])


class EstimatedSurface:
    """A surface described by per-row heights and fixed page capacities."""

    def __init__(self, row_heights, summary_height, compressed_summary_height,
                 first_capacity, continuation_capacity=None):
        self.row_heights = list(row_heights)
        self.summary_height = summary_height
        self.compressed_summary_height = compressed_summary_height
        self.first_capacity = first_capacity
        self.continuation_capacity = continuation_capacity or first_capacity

    @classmethod
    def uniform(cls, item_count, row_height, summary_height, compressed_summary_height,
                first_capacity, continuation_capacity=None):
        return cls([row_height] * item_count, summary_height, compressed_summary_height,
                   first_capacity, continuation_capacity)

    def measure(self, rows, with_summary, compressed):
        height = sum(self.row_heights[i] for i in rows)
        if with_summary:
            height += self.compressed_summary_height if compressed else self.summary_height
        return height

    def capacity(self, page_index):
        return self.first_capacity if page_index == 0 else self.continuation_capacity


def _overflows(surface, page_index, rows, with_summary, compressed):
    return surface.measure(rows, with_summary, compressed) > surface.capacity(page_index) + TOLERANCE


def plan_bill_layout(surface, item_count):
    rows = list(range(item_count))
    compressed = False
    attempted = False

    if item_count >= SUMMARY_ON_PAGE2_AT:
        summary_on_first = False
    elif item_count == COMPRESS_AT:
        attempted = True
        summary_on_first = not _overflows(surface, 0, rows, True, True)
        compressed = summary_on_first
        if not summary_on_first:
            logger.debug("[plan_bill_layout] %d items: compressed summary overflows, moving it to page 2", item_count)
    else:
        summary_on_first = not _overflows(surface, 0, rows, True, False)
        if not summary_on_first:
            logger.debug("[plan_bill_layout] %d items: summary overflows page 1, moving it to page 2", item_count)

    # reflow: drop trailing rows from page 1 until it fits
    first = rows[:]
    while first and _overflows(surface, 0, first, summary_on_first, compressed):
        first.pop()
    pages = [first]
    remaining = rows[len(first):]
    summary_page = 0 if summary_on_first else None

    page_index = 1
    while remaining or summary_page is None:
        taken = []
        while remaining and not _overflows(surface, page_index, taken + remaining[:1], False, False):
            taken.append(remaining.pop(0))
        if remaining and not taken:
            # a row taller than a whole page still needs a page of its own
            taken.append(remaining.pop(0))
        if not remaining and summary_page is None:
            if not taken or not _overflows(surface, page_index, taken, True, compressed):
                summary_page = page_index
        pages.append(taken)
        page_index += 1

    layout = BillLayout(
        pages=tuple(tuple(p) for p in pages),
        summary_page=summary_page,
        compressed=compressed,
        compression_attempted=attempted,
    )
    logger.debug("[plan_bill_layout] items=%d rows/page=%s summary_page=%d compressed=%s",
                 item_count, [len(p) for p in layout.pages], summary_page, compressed)
    return layout
