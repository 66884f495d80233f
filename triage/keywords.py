"""
Keyword tables for reply classification (Indonesian with common English)
"""
import re

# Matched as case-insensitive substrings over the whole message
EMERGENCY_KEYWORDS = (
    "darurat",
    "emergency",
    "sakit parah",
    "sesak napas",
    "jantung",
    "stroke",
    "pendarahan",
    "kecelakaan",
    "tolong",
    "bantuan segera",
    "nyeri dada",
    "pingsan",
    "kejang",
    "alergi parah",
    "overdosis",
)

# Intents that always need a human, whatever the message looks like
COMPLEX_INTENTS = frozenset({
    "medical_advice",
    "prescription_request",
    "symptom_analysis",
    "treatment_question",
    "side_effects",
    "drug_interaction",
    "appointment_request",
    "complaint",
    "feedback",
})

MEDICAL_TERMS_PATTERN = re.compile(r"\b(dokter|obat|penyakit|gejala|diagnosis|pengobatan)\b", re.IGNORECASE)

COMPLEX_WORD_COUNT = 20

# Reply vocabulary, matched against word tokens
AFFIRMATIVE_WORDS = frozenset({
    "sudah", "udah", "sdh", "selesai", "ya", "iya", "yes", "done", "ok", "oke", "okay",
    "baik", "hadir", "diminum",
})

NEGATIVE_WORDS = frozenset({
    "belum", "blm", "tidak", "tdk", "gak", "nggak", "enggak", "lupa", "no", "missed",
})

# A negator directly before an affirmative word flips it ("belum minum", "tidak sudah")
NEGATORS = frozenset({"belum", "blm", "tidak", "tdk", "gak", "nggak", "enggak", "not", "no"})

DEFERRAL_WORDS = frozenset({
    "nanti", "sebentar", "later", "tunggu", "besok", "terlambat",
})

WORD_PATTERN = re.compile(r"[a-z]+")
