"""
Módulo de Cobros (Payments)

Carrito de items, descuento global, pagos divididos, cobro y reembolsos.

Estados del pago:
- pending: editable (items, cantidades, descuento)
- paid: cobrado y facturado; solo admite reembolsos
- cancelled: cancelado sin cobro

Los precios incluyen ISV. El descuento se aplica sobre el subtotal sin ISV y
el impuesto se recalcula sobre la base descontada.

Tablas principales:
- payments: Pagos
- payment_line_items: Items con copia de nombre y precio del catálogo
- partial_payments: Montos por método en pagos divididos
- refunds: Reembolsos
"""
