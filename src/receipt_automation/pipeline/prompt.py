"""Instruction text sent to the vision model together with the receipt image."""

from __future__ import annotations


_SHAPE = """{
  "document_type"?: "receipt" | "invoice" | "other",
  "merchant"?: {
    "name": string,
    "address"?: string,
    "phone"?: string,
    "website"?: string,
    "tax_office"?: string,
    "tax_number"?: string
  },
  "transaction"?: {
    "date"?: string,
    "time"?: string,
    "receipt_number"?: string,
    "payment_method"?: string,
    "card_last4"?: string,
    "currency"?: string
  },
  "totals"?: {
    "subtotal"?: number,
    "tax"?: number,
    "tip"?: number,
    "discount"?: number,
    "total"?: number
  },
  "tax_rates"?: [
    { "rate": number, "taxable_amount"?: number, "tax_amount"?: number }
  ],
  "line_items"?: [
    { "description": string, "quantity"?: number, "unit_price"?: number, "total_price"?: number }
  ],
  "notes"?: [string]
}"""


def build_receipt_prompt() -> str:
    return "\n".join(
        [
            "You are a careful OCR + information extraction system.",
            "Given an image of a receipt or invoice, first locate the receipt area in the image.",
            "Then extract structured data as JSON ONLY.",
            "",
            "Rules:",
            "- Output MUST be a single valid JSON object (no markdown, no code fences, no commentary).",
            "- Output MUST contain ONLY the keys listed in the JSON shape below. Do not add any extra keys.",
            "- If a value is unknown, omit that key (preferred) or set it to null.",
            "- Amounts must be numbers (not strings). Use a dot as decimal separator (e.g. 1368.01).",
            "- Dates as printed are fine; prefer DD.MM.YYYY or YYYY-MM-DD. Times as HH:mm[:ss].",
            "- currency is an ISO-4217 code (e.g. TRY, EUR, USD).",
            "- For Turkish receipts: 'Fiş No'/'Belge No' is transaction.receipt_number,"
            " 'Vergi Dairesi' is merchant.tax_office and 'VKN'/'TCKN'/'Vergi No' is merchant.tax_number"
            " (often right below the tax office).",
            "- tax_rates: one entry per KDV rate printed on the receipt (e.g. 1, 10, 20 for %1/%10/%20).",
            "  rate is the percentage as a number, taxable_amount is the matrah, tax_amount is the KDV amount only.",
            "- If the receipt shows tax-included line totals per rate instead of a KDV breakdown table:",
            "  - First SUM all tax-included amounts for the SAME rate across ALL line items.",
            "  - Then compute: gross = that sum, net = gross / (1 + rate/100), tax = gross - net.",
            "  - Use net as taxable_amount and tax as tax_amount, rounded to 2 decimals.",
            "  - Example: gross=500 at 1% => net=495.05, tax=4.95",
            "- If the receipt prints an explicit KDV breakdown (e.g. 'KDV TUTARI' per rate), copy those values instead of recomputing.",
            "",
            "Return this JSON shape (keys must match exactly, '?' marks optional keys):",
            _SHAPE,
        ]
    )
