"""Printable A4 documents for invoices and orders, rendered with fpdf2."""

from datetime import datetime
from typing import Dict, List, Optional

from fpdf import FPDF

from .helpers import localized, safe_float


def latin1(value) -> str:
    # core fonts only cover Latin-1
    return str(value if value is not None else "").encode("latin-1", "replace").decode("latin-1")


class StoreDocument:
    PAGE_WIDTH = 210
    MARGIN = 15
    PRIMARY_COLOR = (33, 37, 41)
    MUTED_COLOR = (110, 110, 110)
    COLUMN_WIDTHS = (90, 20, 35, 35)

    def __init__(self, store_name: str = "Storefront"):
        self.store_name = store_name

    def render(
        self,
        title: str,
        references: Dict[str, Optional[str]],
        customer: Dict[str, Optional[str]],
        items: List[Dict],
        totals: Dict[str, float],
    ) -> bytes:
        pdf = FPDF(format="A4")
        pdf.set_margins(self.MARGIN, self.MARGIN, self.MARGIN)
        pdf.set_auto_page_break(auto=True, margin=15)
        pdf.add_page()

        self._add_header(pdf, title)
        self._add_key_values(pdf, references)
        pdf.ln(4)
        self._add_key_values(pdf, customer)
        pdf.ln(6)
        self._add_items(pdf, items)
        pdf.ln(4)
        self._add_totals(pdf, totals)

        return bytes(pdf.output())

    def _add_header(self, pdf: FPDF, title: str) -> None:
        pdf.set_font("Helvetica", "B", 18)
        pdf.set_text_color(*self.PRIMARY_COLOR)
        pdf.cell(0, 10, latin1(self.store_name), new_x="LMARGIN", new_y="NEXT")
        pdf.set_font("Helvetica", "B", 14)
        pdf.cell(0, 8, latin1(title), new_x="LMARGIN", new_y="NEXT")
        y_pos = pdf.get_y() + 2
        pdf.set_draw_color(*self.PRIMARY_COLOR)
        pdf.line(self.MARGIN, y_pos, self.PAGE_WIDTH - self.MARGIN, y_pos)
        pdf.ln(6)

    def _add_key_values(self, pdf: FPDF, values: Dict[str, Optional[str]]) -> None:
        pdf.set_text_color(*self.PRIMARY_COLOR)
        for label, value in values.items():
            if value in (None, ""):
                continue
            pdf.set_font("Helvetica", "B", 10)
            pdf.cell(45, 6, latin1(f"{label}:"))
            pdf.set_font("Helvetica", size=10)
            pdf.multi_cell(0, 6, latin1(value), new_x="LMARGIN", new_y="NEXT")

    def _add_items(self, pdf: FPDF, items: List[Dict]) -> None:
        headers = ("Item", "Qty", "Price", "Total")
        pdf.set_font("Helvetica", "B", 10)
        pdf.set_fill_color(235, 235, 235)
        for width, header in zip(self.COLUMN_WIDTHS, headers):
            pdf.cell(width, 8, header, border=1, fill=True)
        pdf.ln()

        pdf.set_font("Helvetica", size=10)
        for item in items:
            quantity = int(safe_float(item.get("quantity"), 0))
            price = safe_float(item.get("price"), 0.0)
            row = (
                latin1(item.get("name") or "Item")[:48],
                str(quantity),
                f"{price:.2f}",
                f"{price * quantity:.2f}",
            )
            for width, text in zip(self.COLUMN_WIDTHS, row):
                pdf.cell(width, 7, text, border=1)
            pdf.ln()

    def _add_totals(self, pdf: FPDF, totals: Dict[str, float]) -> None:
        label_width = sum(self.COLUMN_WIDTHS[:3])
        for label, amount in totals.items():
            pdf.set_font("Helvetica", "B" if label == "Total" else "", 10)
            pdf.cell(label_width, 7, latin1(label), align="R")
            pdf.cell(self.COLUMN_WIDTHS[3], 7, f"{safe_float(amount):.2f}", align="R")
            pdf.ln()


def _format_date(value) -> Optional[str]:
    if isinstance(value, datetime):
        return value.strftime("%Y-%m-%d")
    return None


def _document_items(items: List[Dict], products: Dict) -> List[Dict]:
    rendered = []
    for item in items or []:
        product = products.get(item.get("product")) or {}
        name = localized(product.get("display_names"), "en", product.get("name") or "Item")
        rendered.append(
            {"name": name, "quantity": item.get("quantity"), "price": item.get("price")}
        )
    return rendered


def render_invoice_pdf(invoice: Dict, products: Dict, store_name: str) -> bytes:
    references = {
        "Invoice number": invoice.get("invoice_number"),
        "Invoice type": invoice.get("invoice_type"),
        "Status": invoice.get("status"),
        "Issued": _format_date(invoice.get("created_at")),
    }
    if invoice.get("invoice_type") == "period":
        references["Period"] = (
            f"{_format_date(invoice.get('period_start'))} - {_format_date(invoice.get('period_end'))}"
        )
    customer = {
        "Customer": invoice.get("name"),
        "Email": invoice.get("email"),
        "Phone": invoice.get("phone"),
        "Billing address": localized(invoice.get("billing_address"), "en"),
    }
    items = _document_items(invoice.get("items"), products)
    subtotal = sum(safe_float(item["price"]) * safe_float(item["quantity"]) for item in items)
    amount = safe_float(invoice.get("amount"), subtotal)
    totals = {
        "Subtotal": subtotal,
        "Delivery": max(round(amount - subtotal, 2), 0.0),
        "Total": amount,
    }
    return StoreDocument(store_name).render("Invoice", references, customer, items, totals)


def render_order_pdf(order: Dict, products: Dict, store_name: str) -> bytes:
    references = {
        "Order reference": order.get("order_reference"),
        "Invoice number": order.get("invoice_number") or order.get("period_invoice_number"),
        "Status": order.get("status"),
        "Placed": _format_date(order.get("created_at")),
        "Payment method": order.get("payment_method"),
    }
    customer = {
        "Customer": order.get("name"),
        "Email": order.get("email"),
        "Phone": order.get("phone"),
        "Shipping address": localized(order.get("shipping_address"), "en"),
    }
    totals = {
        "Subtotal": safe_float(order.get("subtotal")),
        "Delivery": safe_float(order.get("delivery_cost")),
        "Total": safe_float(order.get("total")),
    }
    items = _document_items(order.get("items"), products)
    return StoreDocument(store_name).render("Order", references, customer, items, totals)
