"""Printable HTML invoice for an order."""
from html import escape

from shared.config.settings import STORE_NAME
from .enums import PaymentMethod


def _money(amount) -> str:
    return f"&#8377;{float(amount or 0):,.2f}"


def _date(value) -> str:
    return value.strftime("%d %b %Y") if value else "-"


def render_invoice_html(order) -> str:
    address = order.address or {}
    rows = []
    for item in order.items or []:
        quantity = int(item.get("quantity") or 0)
        price = float(item.get("price") or 0)
        rows.append(
            "<tr>"
            f"<td>{escape(str(item.get('name') or ''))}</td>"
            f"<td class=\"num\">{quantity}</td>"
            f"<td class=\"num\">{_money(price)}</td>"
            f"<td class=\"num\">{_money(price * quantity)}</td>"
            "</tr>"
        )

    payment_rows = [f"<tr><th>Total</th><td class=\"num\">{_money(order.total_amount)}</td></tr>"]
    if order.payment_method == PaymentMethod.COD and (order.upfront_amount or 0) > 0:
        payment_rows.append(f"<tr><th>Paid upfront</th><td class=\"num\">{_money(order.upfront_amount)}</td></tr>")
        payment_rows.append(
            f"<tr><th>Due on delivery</th><td class=\"num\">{_money(order.remaining_amount)}</td></tr>"
        )
    if order.coupon_code:
        payment_rows.append(f"<tr><th>Coupon</th><td class=\"num\">{escape(order.coupon_code)}</td></tr>")

    address_line = ", ".join(
        escape(str(address.get(part) or "")) for part in ("street", "city", "state", "pincode", "country")
    )

    return f"""<!DOCTYPE html>
<html>
<head>
<meta charset="utf-8">
<title>Invoice {escape(order.invoice_number or order.id)}</title>
<style>
body {{ font-family: Arial, sans-serif; margin: 40px; color: #333; }}
table {{ width: 100%; border-collapse: collapse; margin-top: 20px; }}
th, td {{ border-bottom: 1px solid #ddd; padding: 8px; text-align: left; }}
.num {{ text-align: right; }}
</style>
</head>
<body>
<h1>{escape(STORE_NAME)}</h1>
<h2>Tax Invoice</h2>
<p>
Invoice number: {escape(order.invoice_number or '-')}<br>
Invoice date: {_date(order.invoice_generated_at or order.created_at)}<br>
Order: #{escape(order.id)}<br>
Payment method: {escape(order.payment_method.upper())} ({escape(order.payment_status)})
</p>
<h3>Bill to</h3>
<p>
{escape(order.customer_name)}<br>
{address_line}<br>
{escape(order.email)} | {escape(order.phone)}
</p>
<table>
<thead><tr><th>Item</th><th class="num">Qty</th><th class="num">Price</th><th class="num">Amount</th></tr></thead>
<tbody>
{''.join(rows)}
</tbody>
</table>
<table>
{''.join(payment_rows)}
</table>
<p>Thank you for shopping with {escape(STORE_NAME)}.</p>
</body>
</html>
"""
