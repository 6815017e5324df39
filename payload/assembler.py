"""
Invoice Payload Assembler

Turns resolved invoice lines into the submission payload:
- detail: one record per exploded line
- cbdetail: one summary entry per material code
- envelope: document header fields around detail and cbdetail

All money is kept as Decimal until the final record, where it is converted
to float. The output depends only on its inputs (the document date comes
from the order), so assembling the same order twice yields identical JSON.
"""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from coding_engine.dimensions import BatchSerial
from coding_engine.models import LineCoding
from coding_engine.rules import normalize_customer_code
from models.canonical import OrderSnapshot
from reconciliation.engine import ExplodedLine
from reconciliation.order_types import OrderTypeClass


ZERO = Decimal("0")

DEFAULT_UNIT = "Cái"
DEFAULT_SERIES = "DEFAULT"
DEFAULT_TAX_CODE = "00"

# Field length limits enforced by the accounting system
FIELD_LIMITS = {
    "ma_vt": 16,
    "ma_kho": 16,
    "ma_lo": 16,
    "so_serial": 64,
    "ma_ck": 32,
    "ma_bp": 8,
    "dvt": 32,
    "ma_kh_i": 16,
    "ma_thue": 8,
    "ma_ctkm_th": 32,
    "ma_the": 256,
    "tk": 16,
}


# =============================================================================
# Helpers
# =============================================================================

def limit_string(value: Optional[str], max_length: int, default: str = "") -> str:
    """Trim and truncate a string field; None/blank becomes ``default``."""
    if value is None:
        return default
    text = str(value).strip()
    if not text:
        return default
    return text[:max_length]


def to_float(value: Optional[Decimal]) -> float:
    if value is None:
        return 0.0
    return float(value)


def format_document_date(value: Optional[date]) -> Optional[str]:
    """Document dates keep the local calendar day: 2025-11-03T00:00:00.000Z."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.strftime("%Y-%m-%dT%H:%M:%S.000Z")
    return f"{value:%Y-%m-%d}T00:00:00.000Z"


# =============================================================================
# Resolved Lines
# =============================================================================

@dataclass
class ResolvedLine:
    """An exploded line with every dimension resolved, ready for the payload.

    Attributes:
        exploded: Exploded line from the reconciliation
        coding: Discount slots, accounts and promotion codes
        batch_serial: Lot or serial code
        warehouse_code: Final warehouse code
        material_code: Material code (ma_vt)
        unit: Unit of measure
        department_code: Department code (ma_bp)
        card_code: Card number (ma_the)
    """
    exploded: ExplodedLine
    coding: LineCoding
    batch_serial: BatchSerial
    warehouse_code: str = ""
    material_code: Optional[str] = None
    unit: Optional[str] = None
    department_code: Optional[str] = None
    card_code: Optional[str] = None


# =============================================================================
# Assembler
# =============================================================================

class InvoicePayloadAssembler:
    """
    Builds the invoice payload for one order.

    Usage:
        assembler = InvoicePayloadAssembler()
        payload = assembler.assemble(snapshot, resolved_lines)
    """

    def assemble(self, order: OrderSnapshot, lines: List[ResolvedLine]) -> Dict[str, Any]:
        """
        Assemble the full payload.

        Args:
            order: Order snapshot (header data and document date)
            lines: Resolved lines in output order

        Returns:
            Payload dict with envelope fields, detail and cbdetail
        """
        detail = [self.detail_record(index, line) for index, line in enumerate(lines)]
        cbdetail = self.summarize(lines)
        return self.envelope(order, lines, detail, cbdetail)

    # =========================================================================
    # Detail
    # =========================================================================

    def detail_record(self, index: int, resolved: ResolvedLine) -> Dict[str, Any]:
        """One detail record; ``index`` is 0-based, ``dong`` is 1-based."""
        exploded = resolved.exploded
        line = exploded.line
        coding = resolved.coding

        record: Dict[str, Any] = {
            "dong": index + 1,
            "ma_vt": limit_string(self._material_code(resolved), FIELD_LIMITS["ma_vt"]),
            "dvt": limit_string(resolved.unit, FIELD_LIMITS["dvt"], DEFAULT_UNIT),
            "so_luong": to_float(exploded.quantity),
            "gia_ban": to_float(coding.unit_price),
            "tien_hang": to_float(coding.line_amount),
        }

        for slot in coding.slots:
            record[slot.amount_field] = to_float(slot.amount)
        for slot in coding.slots:
            record[slot.reason_field] = limit_string(slot.reason_code, FIELD_LIMITS["ma_ck"])

        accounts = coding.accounts
        record.update({
            "tk_dt": limit_string(accounts.revenue_account, FIELD_LIMITS["tk"]),
            "tk_gv": limit_string(accounts.cost_account, FIELD_LIMITS["tk"]),
            "tk_chiet_khau": limit_string(accounts.discount_account, FIELD_LIMITS["tk"]),
            "tk_chi_phi": limit_string(accounts.expense_account, FIELD_LIMITS["tk"]),
            "ma_phi": limit_string(accounts.fee_code, FIELD_LIMITS["tk"]),
            "ma_kho": limit_string(resolved.warehouse_code, FIELD_LIMITS["ma_kho"]),
            "ma_lo": limit_string(resolved.batch_serial.lot_code, FIELD_LIMITS["ma_lo"]),
            "so_serial": limit_string(resolved.batch_serial.serial_code, FIELD_LIMITS["so_serial"]),
            "ma_bp": limit_string(resolved.department_code, FIELD_LIMITS["ma_bp"]),
            "loai_gd": coding.transaction_type,
            "km_yn": coding.gift_flag,
            "ma_ctkm_th": limit_string(coding.gift_promotion_code, FIELD_LIMITS["ma_ctkm_th"]),
            "ma_kh_i": limit_string(line.issue_partner_code, FIELD_LIMITS["ma_kh_i"]),
            "ma_the": limit_string(resolved.card_code, FIELD_LIMITS["ma_the"]),
            "dt_tg_nt": to_float(line.dt_tg_amount),
            "tien_thue": to_float(line.tax_amount),
            "ma_thue": limit_string(line.tax_code, FIELD_LIMITS["ma_thue"], DEFAULT_TAX_CODE),
            "thue_suat": to_float(line.tax_rate),
            "is_inferred": exploded.is_inferred,
        })
        return record

    @staticmethod
    def _material_code(resolved: ResolvedLine) -> str:
        return resolved.material_code or resolved.exploded.line.item_code or ""

    # =========================================================================
    # Summary (cbdetail)
    # =========================================================================

    def summarize(self, lines: List[ResolvedLine]) -> List[Dict[str, Any]]:
        """
        One entry per distinct material code, in first-seen order.

        so_luong and ck_nt are summed; gia_nt is the first line's unit price;
        tien_nt is the summed goods amount minus the summed discount.
        """
        groups: Dict[str, Dict[str, Any]] = {}
        for resolved in lines:
            key = limit_string(self._material_code(resolved), FIELD_LIMITS["ma_vt"])
            group = groups.get(key)
            if group is None:
                group = {
                    "ma_vt": key,
                    "dvt": limit_string(resolved.unit, FIELD_LIMITS["dvt"], DEFAULT_UNIT),
                    "so_luong": ZERO,
                    "ck_nt": ZERO,
                    "gia_nt": resolved.coding.unit_price,
                    "tien_hang": ZERO,
                }
                groups[key] = group
            group["so_luong"] += resolved.exploded.quantity
            group["ck_nt"] += resolved.coding.total_discount
            group["tien_hang"] += resolved.coding.line_amount

        return [
            {
                "ma_vt": group["ma_vt"],
                "dvt": group["dvt"],
                "so_luong": to_float(group["so_luong"]),
                "ck_nt": to_float(group["ck_nt"]),
                "gia_nt": to_float(group["gia_nt"]),
                "tien_nt": to_float(group["tien_hang"] - group["ck_nt"]),
            }
            for group in groups.values()
        ]

    # =========================================================================
    # Envelope
    # =========================================================================

    def envelope(
        self,
        order: OrderSnapshot,
        lines: List[ResolvedLine],
        detail: List[Dict[str, Any]],
        cbdetail: List[Dict[str, Any]],
    ) -> Dict[str, Any]:
        first_line = lines[0].exploded if lines else None
        branch_code = order.branch_code or (first_line.line.branch_code if first_line else None)
        department = order.department_for(branch_code)

        return {
            "action": 0,
            "ma_dvcs": department.company_code if department else None,
            "ma_kh": self.customer_code(order, lines),
            "ong_ba": order.customer_name,
            "ma_gd": "1",
            "ma_ca": order.shift_code,
            "hinh_thuc": "0",
            "dien_giai": order.order_code,
            "ngay_ct": format_document_date(order.document_date),
            "ngay_lct": format_document_date(order.document_date),
            "so_ct": order.order_code,
            "so_seri": branch_code or DEFAULT_SERIES,
            "ma_nt": "VND",
            "ty_gia": 1.0,
            "ma_bp": detail[0]["ma_bp"] if detail else "",
            "tk_thue_no": "131111",
            "ma_kenh": "ONLINE",
            "loai_gd": detail[0]["loai_gd"] if detail else "01",
            "trans_date": self._transaction_date(lines),
            "detail": detail,
            "cbdetail": cbdetail,
        }

    def customer_code(self, order: OrderSnapshot, lines: List[ResolvedLine]) -> str:
        """
        Header customer code (ma_kh).

        Card-split orders are billed to the issuing partner, taken from the
        negative-quantity line first, else any line carrying one.
        """
        is_card_split = any(
            line.exploded.order_type == OrderTypeClass.CARD_SPLIT for line in lines
        )
        if is_card_split:
            sale_lines = [line.exploded.source for line in lines if line.exploded.source is not None]
            partner = next(
                (l.issue_partner_code for l in sale_lines if l.quantity < 0 and l.issue_partner_code),
                None,
            ) or next((l.issue_partner_code for l in sale_lines if l.issue_partner_code), None)
            if partner:
                return normalize_customer_code(partner)
        return normalize_customer_code(order.customer_code)

    @staticmethod
    def _transaction_date(lines: List[ResolvedLine]) -> Optional[str]:
        """Stock-out date of the first matched movement of a normal order."""
        for resolved in lines:
            exploded = resolved.exploded
            if exploded.order_type != OrderTypeClass.NORMAL:
                return None
            movement = exploded.movement
            if movement is not None and movement.moved_at is not None:
                return format_document_date(movement.moved_at)
        return None
