"""
Módulo de Facturación (Invoices)

Emisión del documento de un pago cobrado:

- Recibo simple: numeración secuencial REC-000001, a nombre del paciente
- Factura legal: RTN del cliente y correlativo de un rango CAI vigente
- Descripción genérica opcional ("Servicios Médicos") solo en el documento
- Advertencias de rango CAI por vencer o con pocos correlativos

Tablas principales:
- invoices: Documentos emitidos (uno por pago, inmutables)
- invoice_items: Copia de las líneas del pago al emitir
- invoice_ranges: Rangos de facturación autorizados (CAI)
- receipt_sequences: Secuencia de recibos simples
"""
