"""Closed category taxonomy shared by the extraction prompt, storage and label lookups."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple


@dataclass(frozen=True)
class Category:
    key: str
    label: str
    color: str
    icon: str
    kind: str  # 'expense', 'income' or 'other'
    hint: str = ""


CATEGORIES: Tuple[Category, ...] = (
    # Pengeluaran
    Category("fnb", "Makanan & Minuman", "#ef4444", "utensils", "expense",
             "makan, minum, jajan, kopi, restoran, warung, delivery makanan"),
    Category("transport", "Transportasi", "#eab308", "car", "expense",
             "bensin, ojek online, taksi, parkir, tol, tiket kereta/bus"),
    Category("belanja", "Belanja", "#22c55e", "shopping-bag", "expense",
             "belanja bulanan, supermarket, pakaian, barang online"),
    Category("hiburan", "Hiburan", "#06b6d4", "gamepad-2", "expense",
             "bioskop, game, konser, hobi, nongkrong"),
    Category("tagihan", "Tagihan & Utilitas", "#14b8a6", "receipt", "expense",
             "listrik, air, internet rumah, gas, iuran"),
    Category("kesehatan", "Kesehatan", "#ec4899", "heart", "expense",
             "dokter, obat, apotek, rumah sakit, asuransi kesehatan"),
    Category("pendidikan", "Pendidikan", "#8b5cf6", "graduation-cap", "expense",
             "sekolah, kuliah, kursus, buku, alat tulis"),
    Category("liburan", "Liburan & Wisata", "#3b82f6", "plane", "expense",
             "tiket pesawat, hotel, tiket wisata, oleh-oleh"),
    Category("pulsa", "Pulsa & Data", "#6366f1", "smartphone", "expense",
             "pulsa, paket data, token ponsel"),
    Category("hadiah", "Hadiah & Donasi", "#f43f5e", "gift", "expense",
             "kado, sedekah, zakat, donasi, sumbangan"),
    Category("rumah", "Keperluan Rumah", "#84cc16", "home", "expense",
             "sewa, kos, perabot, perbaikan rumah, kebersihan"),
    Category("kecantikan", "Kecantikan & Perawatan", "#d946ef", "sparkles", "expense",
             "salon, potong rambut, skincare, kosmetik"),
    Category("olahraga", "Olahraga", "#f97316", "dumbbell", "expense",
             "gym, sewa lapangan, peralatan olahraga"),
    Category("cicilan", "Cicilan & Utang", "#0ea5e9", "landmark", "expense",
             "cicilan kendaraan, kartu kredit, paylater, bayar utang"),
    Category("langganan", "Langganan", "#64748b", "repeat", "expense",
             "streaming, aplikasi berbayar, membership bulanan"),
    # Pemasukan
    Category("gaji", "Gaji", "#10b981", "banknote", "income",
             "gaji bulanan, upah, honor"),
    Category("investasi", "Investasi", "#a855f7", "trending-up", "income",
             "dividen, bunga, hasil saham/reksadana, penjualan aset"),
    Category("bonus", "Bonus", "#fbbf24", "gift", "income",
             "bonus, THR, komisi, hadiah uang"),
    # Default
    Category("lainnya", "Lainnya", "#6b7280", "credit-card", "other",
             "apa pun yang tidak cocok dengan kategori lain"),
)

FALLBACK_CATEGORY = "lainnya"

_BY_KEY = {c.key: c for c in CATEGORIES}

CATEGORY_KEYS: Tuple[str, ...] = tuple(c.key for c in CATEGORIES)
EXPENSE_CATEGORIES: Tuple[str, ...] = tuple(c.key for c in CATEGORIES if c.kind == "expense")
INCOME_CATEGORIES: Tuple[str, ...] = tuple(c.key for c in CATEGORIES if c.kind == "income")


def normalize_category(raw: Optional[str]) -> str:
    """Map any raw category string onto a canonical taxonomy key.

    Unknown, empty or missing values collapse to ``lainnya`` instead of
    being rejected.
    """
    if raw is None:
        return FALLBACK_CATEGORY
    key = str(raw).strip().lower()
    return key if key in _BY_KEY else FALLBACK_CATEGORY


def get_category(raw: Optional[str]) -> Category:
    return _BY_KEY[normalize_category(raw)]


def is_expense_category(key: Optional[str]) -> bool:
    return key is not None and key.strip().lower() in EXPENSE_CATEGORIES


def label(raw: Optional[str]) -> str:
    """Display label; unknown values are shown capitalized rather than failing."""
    if raw is None or not str(raw).strip():
        return _BY_KEY[FALLBACK_CATEGORY].label
    value = str(raw).strip()
    known = _BY_KEY.get(value.lower())
    if known:
        return known.label
    return value[0].upper() + value[1:]


def color(raw: Optional[str]) -> str:
    return get_category(raw).color


def icon(raw: Optional[str]) -> str:
    return get_category(raw).icon


def prompt_category_lines(kind: str) -> str:
    """Render ``key: hint`` lines for one kind, used inside the extraction prompt."""
    rows = [c for c in CATEGORIES if c.kind == kind]
    return "\n".join(f"- {c.key}: {c.hint}" for c in rows)
